"""
Exceptions raised by the task queue.

Store failures are not wrapped: any ``sqlalchemy.exc.SQLAlchemyError`` that is
not a duplicate key reaches the caller unchanged. ``StoreError`` is exported so
callers can catch those without importing SQLAlchemy themselves.
"""

from sqlalchemy.exc import SQLAlchemyError

StoreError = SQLAlchemyError


class QueueError(Exception):
    """Base exception for queue operations"""

    pass


class DuplicateKeyError(QueueError):
    """Raised when a task is inserted with a key that already exists"""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Task with key {key!r} already exists")
