"""
Dependency injection container for the task queue.

This module uses python-dependency-injector so that every queue built from one
container shares a single DatabaseManager, and with it one engine and one
transaction lock.
"""

from dependency_injector import containers, providers

from .config import QueueConfig
from .database import DatabaseManager
from .queue import TaskQueue
from .store import TaskStore


class Container(containers.DeclarativeContainer):
    """Main dependency injection container"""

    queue_config = providers.Singleton(
        QueueConfig.from_env
    )

    # Database manager as singleton - one engine per container
    database_manager = providers.Singleton(
        DatabaseManager,
        database_url=queue_config.provided.database_url,
        busy_timeout=queue_config.provided.busy_timeout,
    )

    task_store = providers.Singleton(
        TaskStore,
        database_manager=database_manager,
    )

    task_queue = providers.Factory(
        TaskQueue,
        config=queue_config,
        database_manager=database_manager,
        store=task_store,
    )


def create_container(queue_config: QueueConfig) -> Container:
    """Create a container with custom configuration"""
    new_container = Container()
    new_container.queue_config.override(providers.Object(queue_config))
    return new_container


container = Container()


async def initialize_container():
    """Create the shared DatabaseManager and bootstrap its schema"""
    db_manager = container.database_manager()
    await db_manager.initialize()
    return db_manager
