"""
Tests for option structures, results and configuration.
"""
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from tasklite import (DuplicateKeyError, EnqueueResult, ProcessManyOptions,
                      ProcessOptions, QueueConfig, RemoveCriteria, TaskStatus,
                      parse_statuses)


def test_process_options_defaults():
    options = ProcessManyOptions()

    assert options.statuses == frozenset({TaskStatus.PENDING})
    assert options.keep_after_process is False
    assert options.limit == 1


def test_process_options_ignore_unknown_fields():
    options = ProcessOptions.model_validate({"keepAfterProcess": True, "retries": 3})

    assert options.keep_after_process is False
    assert options.statuses == frozenset({TaskStatus.PENDING})


def test_statuses_all_expands_to_every_status():
    assert ProcessOptions(statuses="all").statuses == frozenset(TaskStatus)
    assert RemoveCriteria(statuses="all").statuses == frozenset(TaskStatus)
    assert parse_statuses("failed") == frozenset({TaskStatus.FAILED})
    assert parse_statuses(["pending", TaskStatus.COMPLETED]) == {TaskStatus.PENDING, TaskStatus.COMPLETED}


def test_invalid_options_are_rejected():
    with pytest.raises(ValidationError):
        ProcessManyOptions(limit=0)
    with pytest.raises(ValidationError):
        ProcessOptions(statuses=["archived"])


def test_remove_criteria_emptiness():
    assert RemoveCriteria().is_empty
    assert not RemoveCriteria(id=3).is_empty
    assert RemoveCriteria(statuses=None).statuses is None


def test_enqueue_result_discriminates_outcome():
    assert EnqueueResult(key="a", task_id=1).ok
    failed = EnqueueResult(key="a", error=DuplicateKeyError("a"))
    assert not failed.ok
    assert "'a'" in str(failed.error)


def test_status_metadata():
    metadata = TaskStatus.FAILED.get_metadata()

    assert metadata["name"] == "failed"
    assert metadata["value"] == "failed"
    assert metadata["description"]


def test_queue_config_from_env(monkeypatch):
    monkeypatch.setenv("TASKLITE_PATH", "/tmp/queue.db")
    monkeypatch.setenv("TASKLITE_TRACE_SQL", "true")
    monkeypatch.setenv("TASKLITE_BUSY_TIMEOUT", "2.5")

    config = QueueConfig.from_env()

    assert config.path == "/tmp/queue.db"
    assert config.trace_sql is True
    assert config.busy_timeout == 2.5
    assert config.database_url == "sqlite+aiosqlite:////tmp/queue.db"


def test_queue_config_memory_marker(monkeypatch):
    monkeypatch.delenv("TASKLITE_PATH", raising=False)
    monkeypatch.delenv("TASKLITE_TRACE_SQL", raising=False)

    assert QueueConfig.from_env().path == "tasklite.db"
    assert QueueConfig.from_env().trace_sql is False
    assert QueueConfig(path=":memory:").database_url == "sqlite+aiosqlite:///:memory:"


def test_remove_criteria_normalizes_aware_cutoff_to_naive_utc():
    cutoff = datetime(2024, 5, 1, 9, 30, tzinfo=timezone(timedelta(hours=-5)))

    criteria = RemoveCriteria(queued_before=cutoff)

    assert criteria.queued_before == datetime(2024, 5, 1, 14, 30)
    assert criteria.queued_before.tzinfo is None
    assert RemoveCriteria(queued_before=datetime(2024, 5, 1, 9, 30)).queued_before == datetime(2024, 5, 1, 9, 30)
