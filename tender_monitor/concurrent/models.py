"""
Data models for the bounded-concurrency worker pool.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Optional, Generic, TypeVar
from datetime import datetime
from enum import Enum

from tender_monitor.utils.errors import ValidationError


T = TypeVar("T")
R = TypeVar("R")


class TaskStatus(Enum):
    """Work item execution status."""
    PENDING = "pending"
    RUNNING = "running"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"


def _default_concurrency() -> int:
    return os.cpu_count() or 4


@dataclass
class WorkerPoolConfig:
    """Configuration for the worker pool."""
    max_concurrent: int = field(default_factory=_default_concurrency)
    task_timeout: float = 30.0
    retry_attempts: int = 2
    retry_delay: float = 1.0
    batch_delay: float = 0.5

    def __post_init__(self):
        """Validate configuration after initialization."""
        self.validate()

    def validate(self) -> None:
        """
        Validate configuration parameters.

        Raises:
            ValidationError: If configuration is invalid
        """
        errors = []

        if self.max_concurrent < 1:
            errors.append("max_concurrent must be at least 1")

        if self.task_timeout <= 0:
            errors.append("task_timeout must be positive")

        if not (0 <= self.retry_attempts <= 10):
            errors.append("retry_attempts must be between 0 and 10")

        if not (0 <= self.retry_delay <= 60.0):
            errors.append("retry_delay must be between 0 and 60.0")

        if self.batch_delay < 0:
            errors.append("batch_delay must not be negative")

        if errors:
            raise ValidationError(
                "Worker pool configuration validation failed",
                {"errors": errors}
            )


@dataclass
class WorkItem(Generic[T]):
    """A queued input payload, tagged with its position in the batch."""
    index: int
    payload: T
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    enqueued_at: datetime = field(default_factory=datetime.now)


@dataclass
class TaskOutcome(Generic[R]):
    """Final outcome of one work item."""
    index: int
    success: bool
    data: Optional[R] = None
    error: Optional[BaseException] = None
    attempts: int = 0
    execution_time: float = 0.0

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return str(self.error) or type(self.error).__name__

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "success": self.success,
            "error": self.error_message,
            "attempts": self.attempts,
            "execution_time": round(self.execution_time, 3),
        }
