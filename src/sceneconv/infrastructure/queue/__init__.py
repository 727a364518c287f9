"""Queue adapters for the PostgreSQL-backed conversion queue."""

from .postgres import PostgresJobQueue, PostgresQueueConfig, init_queue

__all__ = ["PostgresJobQueue", "PostgresQueueConfig", "init_queue"]
