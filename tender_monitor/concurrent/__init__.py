"""
Concurrency primitives for parallel crawl work.

Main Components:
- WorkerPool: bounded-concurrency executor with timeout and retry
- CancellationToken: cooperative stop signal checked at crawl checkpoints
- ThreadSafeCounter / HighWaterMark: shared counters
"""

from .models import (
    WorkerPoolConfig,
    WorkItem,
    TaskOutcome,
    TaskStatus
)

from .thread_safe import (
    ThreadSafeCounter,
    HighWaterMark
)

from .cancellation import CancellationToken
from .worker_pool import WorkerPool, PoolWorker

__all__ = [
    'WorkerPoolConfig',
    'WorkItem',
    'TaskOutcome',
    'TaskStatus',

    'ThreadSafeCounter',
    'HighWaterMark',

    'CancellationToken',
    'WorkerPool',
    'PoolWorker'
]
