"""
Durable single-store task queue embedded in the host process.

Tasks are enqueued under a unique key, claimed in FIFO order and retired on
success or failure, backed by SQLite through SQLAlchemy.
"""

from .config import QueueConfig
from .database import DatabaseManager, TaskModel
from .errors import DuplicateKeyError, QueueError, StoreError
from .queue import TaskQueue
from .store import TaskStore
from .task import (QUEUE_POSITION_POLICY, EnqueueResult, ProcessManyOptions,
                   ProcessOptions, RemoveCriteria, Task, TaskStatus,
                   parse_statuses)

__all__ = [
    "TaskQueue",
    "TaskStore",
    "QueueError",
    "DuplicateKeyError",
    "StoreError",
    "Task",
    "TaskStatus",
    "ProcessOptions",
    "ProcessManyOptions",
    "RemoveCriteria",
    "EnqueueResult",
    "QUEUE_POSITION_POLICY",
    "QueueConfig",
    "DatabaseManager",
    "TaskModel",
    "parse_statuses",
]
