"""
Crawl session data models.
"""

import copy
import time
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from tender_monitor.utils.dates import DateRange, to_iso, from_iso


class SessionStatus(Enum):
    """Crawl session lifecycle status."""
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    STOPPED = "STOPPED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.STOPPED})


class ScrapingProvider(Enum):
    """Supported procurement portals."""
    EPROCURE = "EPROCURE"
    ETENDER = "ETENDER"
    EPROCURE_CPPP = "EPROCURE_CPPP"
    CUSTOM = "CUSTOM"

    @classmethod
    def parse(cls, value) -> "ScrapingProvider":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().upper())


# Monotonic progress counters
COUNTER_FIELDS = (
    "organizations_found",
    "organizations_scraped",
    "tenders_found",
    "tenders_scraped",
    "tenders_saved",
    "pages_navigated",
    "error_count",
)

# Updates touching these fields recompute the ETA
ETA_TRIGGER_FIELDS = frozenset({
    "tenders_scraped",
    "tenders_found",
    "progress_percent",
    "organizations_scraped",
})


def generate_session_id() -> str:
    """Generate an opaque session id."""
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


@dataclass
class CrawlSession:
    """Live state of one crawl run."""
    id: str
    provider: ScrapingProvider
    name: str = ""
    description: Optional[str] = None
    base_url: Optional[str] = None
    status: SessionStatus = SessionStatus.RUNNING

    started_at: datetime = field(default_factory=datetime.now)
    last_activity_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    # Progress counters
    organizations_found: int = 0
    organizations_scraped: int = 0
    tenders_found: int = 0
    tenders_scraped: int = 0
    tenders_saved: int = 0
    pages_navigated: int = 0
    error_count: int = 0
    progress_percent: float = 0.0

    # Activity cursor
    current_organization: Optional[str] = None
    current_stage: Optional[str] = None

    # Derived estimates, never authoritative
    scraping_rate: Optional[float] = None
    time_per_item: Optional[float] = None
    organizations_per_minute: Optional[float] = None
    estimated_time_remaining_ms: Optional[int] = None
    estimated_time_remaining_formatted: Optional[str] = None
    estimated_completion_time: Optional[datetime] = None
    pages_per_minute: float = 0.0
    avg_response_time: float = 0.0

    error_message: Optional[str] = None

    # Request parameters
    organizations: List[str] = field(default_factory=list)
    date_range: Optional[DateRange] = None
    per_org_limit: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def duration_ms(self) -> Optional[int]:
        if self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def snapshot(self) -> "CrawlSession":
        """Return an independent copy safe to hand to other threads."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """
        Render the session for readers.

        Timestamps are ISO-8601 and the percentage is rounded to two decimals.
        """
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "provider": self.provider.value,
            "base_url": self.base_url,
            "status": self.status.value,
            "started_at": to_iso(self.started_at),
            "last_activity_at": to_iso(self.last_activity_at),
            "completed_at": to_iso(self.completed_at),
            "organizations_found": self.organizations_found,
            "organizations_scraped": self.organizations_scraped,
            "tenders_found": self.tenders_found,
            "tenders_scraped": self.tenders_scraped,
            "tenders_saved": self.tenders_saved,
            "pages_navigated": self.pages_navigated,
            "error_count": self.error_count,
            "progress_percent": round(self.progress_percent, 2),
            "current_organization": self.current_organization,
            "current_stage": self.current_stage,
            "scraping_rate": self.scraping_rate,
            "time_per_item": self.time_per_item,
            "organizations_per_minute": self.organizations_per_minute,
            "estimated_time_remaining_ms": self.estimated_time_remaining_ms,
            "estimated_time_remaining_formatted": self.estimated_time_remaining_formatted,
            "estimated_completion_time": to_iso(self.estimated_completion_time),
            "pages_per_minute": self.pages_per_minute,
            "avg_response_time": self.avg_response_time,
            "error_message": self.error_message,
            "organizations": list(self.organizations),
            "date_range": self.date_range.to_dict() if self.date_range else None,
            "per_org_limit": self.per_org_limit,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawlSession":
        """Rebuild a session from ``to_dict`` output or a database row mapping."""
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}

        values["provider"] = ScrapingProvider.parse(values["provider"])
        values["status"] = SessionStatus(values.get("status") or SessionStatus.RUNNING.value)

        for key in ("started_at", "last_activity_at", "completed_at", "estimated_completion_time"):
            if key in values:
                values[key] = from_iso(values[key])
        for key in ("started_at", "last_activity_at"):
            if values.get(key) is None:
                values.pop(key, None)

        date_range = values.get("date_range")
        if isinstance(date_range, dict):
            values["date_range"] = DateRange(
                start=from_iso(date_range.get("start")),
                end=from_iso(date_range.get("end"))
            )

        values["organizations"] = list(values.get("organizations") or [])
        values["progress_percent"] = float(values.get("progress_percent") or 0.0)
        return cls(**values)
