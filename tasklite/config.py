"""
Configuration for the task queue.
"""
import os
from dataclasses import dataclass


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class QueueConfig:
    """Configuration settings for the task queue"""
    path: str = "tasklite.db"  # ":memory:" keeps the store for the process lifetime only
    trace_sql: bool = False
    busy_timeout: float = 5.0  # seconds a writer waits for the SQLite write lock

    @property
    def database_url(self) -> str:
        return f"sqlite+aiosqlite:///{self.path}"

    @classmethod
    def from_env(cls) -> "QueueConfig":
        """Create configuration from environment variables"""
        return cls(
            path=os.getenv("TASKLITE_PATH", "tasklite.db"),
            trace_sql=_env_flag("TASKLITE_TRACE_SQL"),
            busy_timeout=float(os.getenv("TASKLITE_BUSY_TIMEOUT", "5.0")),
        )
