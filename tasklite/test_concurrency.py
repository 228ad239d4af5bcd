#!/usr/bin/env python3
"""
Claim exclusivity across independent queue handles on one database file.
"""
import asyncio
import os

import pytest
import pytest_asyncio

from tasklite import ProcessManyOptions, QueueConfig, TaskQueue


@pytest_asyncio.fixture
async def shared_queues(tmp_path):
    """Two queues with separate engines on the same file"""
    config = QueueConfig(path=os.path.join(str(tmp_path), "shared.db"), busy_timeout=30.0)
    queues = [TaskQueue(config), TaskQueue(config)]
    for queue in queues:
        await queue.initialize()
    yield queues
    for queue in queues:
        await queue.close()


async def _drain(queue: TaskQueue, claimed: list, limit: int = 1):
    async def callback(tasks):
        await asyncio.sleep(0)
        claimed.extend(task.id for task in tasks)

    while await queue.process_many(callback, ProcessManyOptions(limit=limit)):
        pass


@pytest.mark.asyncio
async def test_separate_engines_never_claim_same_task(shared_queues):
    first, second = shared_queues
    for i in range(20):
        await first.enqueue(f"key-{i}")

    claimed_first, claimed_second = [], []
    await asyncio.gather(
        _drain(first, claimed_first),
        _drain(second, claimed_second, limit=3),
    )

    claimed = claimed_first + claimed_second
    assert len(claimed) == 20
    assert len(set(claimed)) == 20
    assert await first.list_tasks() == []


@pytest.mark.integration
@pytest.mark.asyncio
async def test_many_workers_drain_large_queue(shared_queues):
    first, second = shared_queues
    for i in range(500):
        await first.enqueue(f"key-{i}", str(i))

    claimed = [[] for _ in range(8)]
    await asyncio.gather(
        *(_drain(shared_queues[i % 2], claimed[i], limit=i + 1) for i in range(8))
    )

    all_ids = [task_id for ids in claimed for task_id in ids]
    assert len(all_ids) == 500
    assert len(set(all_ids)) == 500
    assert sum((await second.stats()).values()) == 0
