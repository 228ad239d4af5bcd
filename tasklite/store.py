"""
Row-level operations on the tasks table.

Every method runs in its own transaction from ``DatabaseManager.transaction``;
multi-statement sequences such as the claim never span more than one.
"""

import logging
from datetime import datetime
from typing import Collection, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError

from .database import DatabaseManager, TaskModel
from .errors import DuplicateKeyError
from .task import RemoveCriteria, Task, TaskStatus, utc_now

logger = logging.getLogger(__name__)

_NO_SYNC = {"synchronize_session": False}


def _is_duplicate_key(error: IntegrityError) -> bool:
    return "UNIQUE constraint failed: tasks.key" in str(error.orig)


def _status_values(statuses: Iterable[TaskStatus]) -> List[str]:
    return sorted(TaskStatus(status).value for status in statuses)


class TaskStore:
    """Atomic physical access to the tasks table"""

    def __init__(self, database_manager: DatabaseManager):
        self.db_manager = database_manager

    async def insert(self, key: str, value: Optional[str] = None) -> int:
        """
        Insert a new pending task.

        Raises:
            DuplicateKeyError: If a task with ``key`` already exists
        """
        now = utc_now()
        try:
            async with self.db_manager.transaction() as session:
                result = await session.execute(
                    insert(TaskModel)
                    .values(
                        key=key,
                        value=value,
                        status=TaskStatus.PENDING.value,
                        queued_at=now,
                        created_at=now,
                    )
                    .returning(TaskModel.id)
                )
                task_id = result.scalar_one()
        except IntegrityError as e:
            if _is_duplicate_key(e):
                raise DuplicateKeyError(key) from e
            raise

        logger.debug("Inserted task %s with key %r", task_id, key)
        return task_id

    async def upsert_by_key(self, key: str, value: Optional[str] = None) -> int:
        """
        Insert a pending task, or reset the existing task with ``key``.

        On conflict the value is replaced, the status goes back to pending and
        queued_at is refreshed, all in one statement.
        """
        now = utc_now()
        stmt = sqlite_insert(TaskModel).values(
            key=key,
            value=value,
            status=TaskStatus.PENDING.value,
            queued_at=now,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[TaskModel.key],
            set_={
                "value": stmt.excluded["value"],
                "status": TaskStatus.PENDING.value,
                "queued_at": stmt.excluded["queued_at"],
            },
        ).returning(TaskModel.id)

        async with self.db_manager.transaction() as session:
            result = await session.execute(stmt)
            task_id = result.scalar_one()

        logger.debug("Upserted task %s with key %r", task_id, key)
        return task_id

    async def claim_batch(self, statuses: Collection[TaskStatus], limit: int) -> List[Task]:
        """
        Claim up to ``limit`` tasks whose status is in ``statuses``.

        Oldest queued_at first, ties broken by id. The selected rows are marked
        processing in the same transaction, so no other claimer can select them.

        Returns:
            The claimed tasks in claim order, already showing their new state
        """
        if limit <= 0 or not statuses:
            return []

        now = utc_now()
        async with self.db_manager.transaction() as session:
            result = await session.execute(
                select(TaskModel)
                .where(TaskModel.status.in_(_status_values(statuses)))
                .order_by(TaskModel.queued_at.asc(), TaskModel.id.asc())
                .limit(limit)
            )
            claimed = [model.to_task() for model in result.scalars().all()]
            if not claimed:
                return []

            await session.execute(
                update(TaskModel)
                .where(TaskModel.id.in_([task.id for task in claimed]))
                .values(status=TaskStatus.PROCESSING.value, processed_at=now, queued_at=now)
                .execution_options(**_NO_SYNC)
            )

        logger.debug("Claimed tasks %s", [task.id for task in claimed])
        return [
            task.model_copy(update={"status": TaskStatus.PROCESSING, "processed_at": now, "queued_at": now})
            for task in claimed
        ]

    async def mark_completed(self, ids: Collection[int], claimed_at: Optional[datetime] = None) -> int:
        """
        Move processing tasks to completed. Returns the number of rows changed.

        With ``claimed_at``, only rows still held by the claim stamped at that
        time are changed; a row claimed again since then is left alone.
        """
        return await self._finish(ids, TaskStatus.COMPLETED, "completed_at", claimed_at)

    async def mark_failed(self, ids: Collection[int], claimed_at: Optional[datetime] = None) -> int:
        """Move processing tasks to failed. ``claimed_at`` works as in ``mark_completed``."""
        return await self._finish(ids, TaskStatus.FAILED, "failed_at", claimed_at)

    async def _finish(
        self, ids: Collection[int], status: TaskStatus, stamp_column: str, claimed_at: Optional[datetime]
    ) -> int:
        if not ids:
            return 0

        conditions = [TaskModel.id.in_(list(ids)), TaskModel.status == TaskStatus.PROCESSING.value]
        if claimed_at is not None:
            conditions.append(TaskModel.processed_at == claimed_at)

        now = utc_now()
        async with self.db_manager.transaction() as session:
            result = await session.execute(
                update(TaskModel)
                .where(*conditions)
                .values({"status": status.value, stamp_column: now, "queued_at": now})
                .execution_options(**_NO_SYNC)
            )
            changed = result.rowcount

        logger.debug("Marked %d of %d tasks as %s", changed, len(ids), status.value)
        return changed

    async def delete_by_ids(
        self,
        ids: Collection[int],
        statuses: Optional[Collection[TaskStatus]] = None,
        claimed_at: Optional[datetime] = None,
    ) -> int:
        """Delete tasks by id, optionally only those still in ``statuses`` and held by the claim at ``claimed_at``"""
        if not ids:
            return 0

        conditions = [TaskModel.id.in_(list(ids))]
        if statuses is not None:
            conditions.append(TaskModel.status.in_(_status_values(statuses)))
        if claimed_at is not None:
            conditions.append(TaskModel.processed_at == claimed_at)

        async with self.db_manager.transaction() as session:
            result = await session.execute(
                delete(TaskModel).where(*conditions).execution_options(**_NO_SYNC)
            )
            return result.rowcount

    async def delete_by_filter(self, criteria: RemoveCriteria) -> int:
        """
        Delete every task matching all supplied predicates.

        Predicates left as None are not constraints, so empty criteria delete
        every task. ``queued_before`` is strict.
        """
        conditions = []
        if criteria.id is not None:
            conditions.append(TaskModel.id == criteria.id)
        if criteria.statuses is not None:
            conditions.append(TaskModel.status.in_(_status_values(criteria.statuses)))
        if criteria.queued_before is not None:
            conditions.append(TaskModel.queued_at < criteria.queued_before)

        async with self.db_manager.transaction() as session:
            result = await session.execute(
                delete(TaskModel).where(*conditions).execution_options(**_NO_SYNC)
            )
            deleted = result.rowcount

        logger.info("Removed %d tasks", deleted)
        return deleted

    async def get(self, task_id: int) -> Optional[Task]:
        async with self.db_manager.transaction() as session:
            result = await session.execute(select(TaskModel).where(TaskModel.id == task_id))
            task_model = result.scalar_one_or_none()
            return task_model.to_task() if task_model else None

    async def get_by_key(self, key: str) -> Optional[Task]:
        async with self.db_manager.transaction() as session:
            result = await session.execute(select(TaskModel).where(TaskModel.key == key))
            task_model = result.scalar_one_or_none()
            return task_model.to_task() if task_model else None

    async def list_tasks(self, statuses: Optional[Collection[TaskStatus]] = None) -> List[Task]:
        """All tasks in claim order, optionally restricted to ``statuses``"""
        query = select(TaskModel).order_by(TaskModel.queued_at.asc(), TaskModel.id.asc())
        if statuses is not None:
            query = query.where(TaskModel.status.in_(_status_values(statuses)))

        async with self.db_manager.transaction() as session:
            result = await session.execute(query)
            return [model.to_task() for model in result.scalars().all()]

    async def count_by_status(self) -> Dict[TaskStatus, int]:
        """Task count for every status, zero for statuses with no rows"""
        counts = {status: 0 for status in TaskStatus}
        async with self.db_manager.transaction() as session:
            result = await session.execute(
                select(TaskModel.status, func.count(TaskModel.id)).group_by(TaskModel.status)
            )
            for status, count in result.all():
                counts[TaskStatus(status)] = count
        return counts
