"""
Task queue engine backed by SQLite with SQLAlchemy.

This module provides the public queue contract: enqueue tasks under a unique
key, claim and process them in FIFO order through a caller-supplied callback,
and remove them by id, status or age.
"""

import inspect
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Collection, Dict, List, Optional, Union

from .config import QueueConfig
from .database import DatabaseManager, TraceSink
from .errors import DuplicateKeyError
from .store import TaskStore
from .task import (EnqueueResult, ProcessManyOptions, ProcessOptions,
                   RemoveCriteria, Task, TaskStatus, parse_statuses)

logger = logging.getLogger(__name__)

TaskCallback = Callable[[Task], Union[None, Exception, Awaitable[Any]]]
BatchCallback = Callable[[List[Task]], Union[None, Exception, Awaitable[Any]]]


def _sql_trace_logger(statement: str, parameters: Any):
    logger.debug("SQL: %s %r", statement, parameters)


class TaskQueue:
    """
    A durable task queue embedded in the host process.

    Tasks move pending -> processing -> completed or failed. A claim selects
    and marks tasks in one transaction, so concurrent callers never claim the
    same task. Callbacks run outside any transaction; a task whose caller dies
    mid-callback stays processing until the caller removes or re-enqueues it.
    """

    def __init__(
        self,
        config: Optional[QueueConfig] = None,
        database_manager: Optional[DatabaseManager] = None,
        store: Optional[TaskStore] = None,
    ):
        self.config = config or QueueConfig.from_env()
        if database_manager is None:
            # Fallback to creating our own DatabaseManager if not injected
            self.db_manager = DatabaseManager(self.config.database_url, busy_timeout=self.config.busy_timeout)
        else:
            self.db_manager = database_manager
        self.store = store or TaskStore(self.db_manager)

        if self.config.trace_sql:
            self.db_manager.set_trace(_sql_trace_logger)

    @classmethod
    async def open(cls, path: str, trace: Optional[TraceSink] = None) -> "TaskQueue":
        """Create and initialize a queue on ``path``; ``":memory:"`` keeps it in memory"""
        queue = cls(QueueConfig(path=path, trace_sql=False))
        if trace is not None:
            queue.db_manager.set_trace(trace)
        await queue.initialize()
        return queue

    async def initialize(self):
        """Initialize the queue and create database tables"""
        await self.db_manager.create_tables()
        logger.info("Task queue initialized with database: %s", self.db_manager.database_url)

    async def close(self):
        """Close the queue and cleanup resources"""
        await self.db_manager.close()
        logger.info("Task queue closed")

    async def __aenter__(self) -> "TaskQueue":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def enqueue(self, key: str, value: Optional[str] = None, upsert: bool = False) -> EnqueueResult:
        """
        Add a task without raising on a duplicate key.

        Args:
            key: Unique task key
            value: Opaque payload stored with the task
            upsert: Reset an existing task with the same key instead of failing

        Returns:
            A result holding the task id, or the DuplicateKeyError when ``key``
            already exists and ``upsert`` is False
        """
        try:
            task_id = await self.enqueue_or_raise(key, value, upsert=upsert)
        except DuplicateKeyError as e:
            logger.warning("Skipped enqueue of existing key %r", key)
            return EnqueueResult(key=key, error=e)
        return EnqueueResult(key=key, task_id=task_id)

    async def enqueue_or_raise(self, key: str, value: Optional[str] = None, upsert: bool = False) -> int:
        """
        Add a task, raising when the key already exists.

        Returns:
            The task id

        Raises:
            DuplicateKeyError: If ``key`` exists and ``upsert`` is False
        """
        if upsert:
            task_id = await self.store.upsert_by_key(key, value)
        else:
            task_id = await self.store.insert(key, value)
        logger.info("Enqueued task %s with key %r", task_id, key)
        return task_id

    async def process(self, callback: TaskCallback, options: Optional[ProcessOptions] = None) -> bool:
        """
        Claim one task and run ``callback`` with it.

        Returns:
            False when no task matched, True once the task was processed

        Raises:
            Whatever ``callback`` raised, after the task was marked failed
        """
        options = options or ProcessOptions()
        return await self._run(
            lambda tasks: callback(tasks[0]),
            statuses=options.statuses,
            limit=1,
            keep_after_process=options.keep_after_process,
        )

    async def process_many(self, callback: BatchCallback, options: Optional[ProcessManyOptions] = None) -> bool:
        """
        Claim up to ``options.limit`` tasks and run ``callback`` once with the batch.

        Returns:
            False when no task matched, True once the batch was processed

        Raises:
            Whatever ``callback`` raised, after the batch was marked failed
        """
        options = options or ProcessManyOptions()
        return await self._run(
            callback,
            statuses=options.statuses,
            limit=options.limit,
            keep_after_process=options.keep_after_process,
        )

    async def _run(
        self,
        callback: BatchCallback,
        statuses: Collection[TaskStatus],
        limit: int,
        keep_after_process: bool,
    ) -> bool:
        tasks = await self.store.claim_batch(statuses, limit)
        if not tasks:
            return False

        ids = [task.id for task in tasks]
        # Finishing is limited to rows still held by this claim
        claimed_at = tasks[0].processed_at
        try:
            outcome = callback(tasks)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            if isinstance(outcome, Exception):
                raise outcome
        except Exception:
            await self.store.mark_failed(ids, claimed_at=claimed_at)
            logger.warning("Marked tasks %s as failed", ids)
            raise

        if keep_after_process:
            await self.store.mark_completed(ids, claimed_at=claimed_at)
            logger.info("Marked tasks %s as completed", ids)
        else:
            await self.store.delete_by_ids(ids, statuses=[TaskStatus.PROCESSING], claimed_at=claimed_at)
            logger.info("Processed and removed tasks %s", ids)
        return True

    async def remove(
        self,
        criteria: Optional[RemoveCriteria] = None,
        *,
        id: Optional[int] = None,
        statuses: Optional[Union[Collection[TaskStatus], str]] = None,
        queued_before: Optional[datetime] = None,
    ) -> int:
        """
        Delete every task matching all of the given predicates.

        Either pass ``criteria`` or the keyword predicates, not both. Omitted
        predicates are not constraints; with none at all every task is removed.

        Returns:
            Number of tasks removed
        """
        if criteria is None:
            criteria = RemoveCriteria(id=id, statuses=statuses, queued_before=queued_before)
        elif id is not None or statuses is not None or queued_before is not None:
            raise ValueError("Pass either criteria or keyword predicates, not both")
        if criteria.is_empty:
            logger.warning("Removing every task: no predicates given")
        return await self.store.delete_by_filter(criteria)

    async def remove_by_status(self, statuses: Union[Collection[TaskStatus], str]) -> int:
        return await self.remove(statuses=statuses)

    async def get_task(self, task_id: int) -> Optional[Task]:
        return await self.store.get(task_id)

    async def get_task_by_key(self, key: str) -> Optional[Task]:
        return await self.store.get_by_key(key)

    async def list_tasks(self, statuses: Optional[Union[Collection[TaskStatus], str]] = None) -> List[Task]:
        if statuses is not None:
            statuses = parse_statuses(statuses)
        return await self.store.list_tasks(statuses)

    async def stats(self) -> Dict[TaskStatus, int]:
        return await self.store.count_by_status()
