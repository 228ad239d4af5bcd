#!/usr/bin/env python3
"""
Test script to verify queue persistence with file-based SQLite database.
"""
import logging
import os
import tempfile

import pytest

from tasklite import QueueConfig, TaskStatus
from tasklite.container import create_container

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SimulatedCrash(BaseException):
    """Not an Exception, so the queue leaves the claimed task as it is"""


@pytest.mark.asyncio
async def test_queue_persistence():
    """Test that the queue persists data correctly to disk"""

    with tempfile.TemporaryDirectory() as temp_dir:
        db_path = os.path.join(temp_dir, "test_queue.db")
        config = QueueConfig(path=db_path)

        # Phase 1: Create queue, add tasks and claim one of them
        logger.info("Phase 1: Creating queue and adding tasks")
        queue1 = create_container(config).task_queue()
        await queue1.initialize()

        await queue1.enqueue("report-1", "payload-1")
        await queue1.enqueue("report-2", "payload-2")

        def crash(task):
            raise SimulatedCrash()

        with pytest.raises(SimulatedCrash):
            await queue1.process(crash)

        await queue1.close()

        # Phase 2: Recreate queue and verify persistence
        logger.info("Phase 2: Recreating queue and verifying persistence")
        queue2 = create_container(config).task_queue()
        await queue2.initialize()

        stuck = await queue2.get_task_by_key("report-1")
        assert stuck is not None, "Task should persist after queue restart"
        assert stuck.status == TaskStatus.PROCESSING, "Interrupted task should stay claimed"
        assert stuck.processed_at is not None

        waiting = await queue2.get_task_by_key("report-2")
        assert waiting.status == TaskStatus.PENDING
        assert waiting.value == "payload-2"

        # Recovery of a stuck task is up to the caller
        await queue2.enqueue("report-1", "payload-1", upsert=True)
        assert (await queue2.get_task_by_key("report-1")).status == TaskStatus.PENDING

        await queue2.close()
