from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import DuplicateKeyError

# Every transition (claim, complete, fail, upsert) rewrites queued_at, so claim
# order is the order of the last state change rather than of first submission.
QUEUE_POSITION_POLICY = "touch-resets-position"


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, the form SQLite stores and compares."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class TaskStatus(str, Enum):
    # Pending is the state for tasks waiting to be claimed. Every task is
    # created here, and an upsert puts a task back here from any state.
    PENDING = "pending"
    # Processing is the state for tasks claimed by a caller whose callback has
    # not returned yet. Nothing moves a task out of it automatically.
    PROCESSING = "processing"
    # Completed is the terminal state for tasks kept after a successful callback.
    COMPLETED = "completed"
    # Failed is the terminal state for tasks whose callback raised.
    FAILED = "failed"

    def get_metadata(self) -> Dict[str, Any]:
        """
        Returns metadata for the task status including name, value, and description.

        Returns:
            Dictionary containing name, value, and description of the status.
        """
        descriptions = {
            TaskStatus.PENDING: "Tasks waiting to be claimed",
            TaskStatus.PROCESSING: "Tasks claimed and currently being processed",
            TaskStatus.COMPLETED: "Tasks processed successfully and kept after processing",
            TaskStatus.FAILED: "Tasks whose processing callback raised an error",
        }

        return {
            "name": self.name.lower(),
            "value": self.value,
            "description": descriptions[self],
        }


def _coerce_statuses(value: Any) -> Any:
    if value == "all":
        return frozenset(TaskStatus)
    if isinstance(value, (str, TaskStatus)):
        return [value]
    return value


def parse_statuses(value: Any) -> FrozenSet[TaskStatus]:
    """Normalize a status, a collection of statuses or "all" to a set of TaskStatus"""
    return frozenset(TaskStatus(status) for status in _coerce_statuses(value))


class Task(BaseModel):
    id: int
    key: str
    value: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    queued_at: datetime
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    created_at: datetime

    def to_json(self) -> str:
        """
        Converts a Task object into a JSON string.
        """
        return self.model_dump_json()

    @classmethod
    def from_json(cls, json_string: str) -> "Task":
        """
        Parses a JSON string into a Task object.
        """
        return cls.model_validate_json(json_string)


class ProcessOptions(BaseModel):
    """Options for claiming and processing a single task.

    ``statuses`` selects which tasks may be claimed; the string ``"all"``
    expands to every status. ``keep_after_process`` keeps a successfully
    processed task as ``completed`` instead of deleting it. Unknown fields are
    ignored.
    """

    statuses: FrozenSet[TaskStatus] = Field(default_factory=lambda: frozenset({TaskStatus.PENDING}))
    keep_after_process: bool = False

    @field_validator("statuses", mode="before")
    @classmethod
    def _expand_statuses(cls, value: Any) -> Any:
        return _coerce_statuses(value)


class ProcessManyOptions(ProcessOptions):
    """Options for claiming and processing a batch of up to ``limit`` tasks."""

    limit: int = Field(default=1, ge=1)


class RemoveCriteria(BaseModel):
    """Conjunction of removal predicates. A predicate left as None is not a constraint."""

    id: Optional[int] = None
    statuses: Optional[FrozenSet[TaskStatus]] = None
    queued_before: Optional[datetime] = None

    @field_validator("statuses", mode="before")
    @classmethod
    def _expand_statuses(cls, value: Any) -> Any:
        if value is None:
            return None
        return _coerce_statuses(value)

    @field_validator("queued_before")
    @classmethod
    def _normalize_cutoff(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Stored timestamps are naive UTC and SQLite compares them as text
        return None if value is None else to_naive_utc(value)

    @property
    def is_empty(self) -> bool:
        return self.id is None and self.statuses is None and self.queued_before is None


class EnqueueResult(BaseModel):
    """Outcome of a best-effort enqueue: either a task id or the duplicate-key error."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    key: str
    task_id: Optional[int] = None
    error: Optional[DuplicateKeyError] = None

    @property
    def ok(self) -> bool:
        return self.error is None
