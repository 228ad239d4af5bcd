"""
Database models and connection management for the task queue.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Optional

from sqlalchemy import DateTime, Index, Integer, String, Text, event
from sqlalchemy.ext.asyncio import (AsyncSession, async_sessionmaker,
                                    create_async_engine)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .task import Task, TaskStatus, utc_now

logger = logging.getLogger(__name__)

TraceSink = Callable[[str, Any], None]


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models"""

    pass


class TaskModel(Base):
    """SQLAlchemy model for tasks table"""

    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(Text, nullable=False)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, default=TaskStatus.PENDING.value)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    queued_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    __table_args__ = (
        Index("idx_key", "key", unique=True),
        Index("idx_status", "status"),
        Index("idx_queued_at", "queued_at"),
    )

    def to_task(self) -> Task:
        """Convert SQLAlchemy model to Pydantic Task"""
        return Task(
            id=self.id,
            key=self.key,
            value=self.value,
            status=TaskStatus(self.status),
            queued_at=self.queued_at,
            processed_at=self.processed_at,
            completed_at=self.completed_at,
            failed_at=self.failed_at,
            created_at=self.created_at,
        )


def _disable_driver_transactions(dbapi_connection, connection_record):
    # Stop the sqlite3 driver from issuing its own deferred BEGIN so the
    # "begin" listener below controls how transactions start.
    dbapi_connection.isolation_level = None


def _begin_immediate(conn):
    # Take the write lock up front: a claim reads then writes, and two
    # deferred transactions could both read the same rows before either writes.
    conn.exec_driver_sql("BEGIN IMMEDIATE")


class DatabaseManager:
    """Manages the engine, schema bootstrap and transaction boundaries"""

    def __init__(self, database_url: str, busy_timeout: float = 5.0, trace: Optional[TraceSink] = None):
        self.database_url = database_url
        self.async_engine = create_async_engine(
            database_url, echo=False, connect_args={"timeout": busy_timeout}
        )
        self.async_session_factory = async_sessionmaker(self.async_engine, class_=AsyncSession, expire_on_commit=False)
        self._lock = asyncio.Lock()
        self._trace: Optional[TraceSink] = None

        sync_engine = self.async_engine.sync_engine
        event.listen(sync_engine, "connect", _disable_driver_transactions)
        event.listen(sync_engine, "begin", _begin_immediate)
        event.listen(sync_engine, "before_cursor_execute", self._before_cursor_execute)

        if trace is not None:
            self.set_trace(trace)

    def set_trace(self, trace: Optional[TraceSink]):
        """Install a sink called with (statement, parameters) before each statement; None removes it"""
        self._trace = trace

    def _before_cursor_execute(self, conn, cursor, statement, parameters, context, executemany):
        if self._trace is not None:
            self._trace(statement, parameters)

    async def create_tables(self):
        """Create all tables and indexes if they don't exist"""
        async with self._lock:
            async with self.async_engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

    async def initialize(self):
        """Initialize the database by creating tables"""
        await self.create_tables()
        logger.info("Database initialized: %s", self.database_url)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        Open a session inside one write transaction.

        Commits when the block exits normally and rolls back when it raises.
        Transactions opened through the same manager run one at a time.
        """
        async with self._lock:
            async with self.async_session_factory() as session:
                async with session.begin():
                    yield session

    async def close(self):
        """Close the database connection"""
        await self.async_engine.dispose()
