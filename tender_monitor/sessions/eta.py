"""
Remaining-time estimation for crawl sessions.

Estimates are recomputed from the raw counters on every call. Tiers, most
precise first:

1. organization rate, once an organization is finished and the total is known
2. item throughput, once a tender has been scraped and a target is known
3. progress ratio, once the progress percentage is positive
4. nothing: every estimate field is cleared

The organization tier wins whenever it applies, even when the item tier
would disagree early in a run. Estimates are capped at one year.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional


MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR

MAX_ETA_MS = 365 * MS_PER_DAY
MIN_PROGRESS_PERCENT = 1e-6

_UNITS = (
    ("d", MS_PER_DAY),
    ("h", MS_PER_HOUR),
    ("m", MS_PER_MINUTE),
    ("s", MS_PER_SECOND),
)


class EtaTier(Enum):
    ORGANIZATION_RATE = "organization_rate"
    ITEM_THROUGHPUT = "item_throughput"
    PROGRESS_RATIO = "progress_ratio"
    NONE = "none"


@dataclass
class EtaEstimate:
    """Derived timing fields for a session."""
    tier: EtaTier = EtaTier.NONE
    scraping_rate: Optional[float] = None
    time_per_item: Optional[float] = None
    organizations_per_minute: Optional[float] = None
    estimated_time_remaining_ms: Optional[int] = None
    estimated_time_remaining_formatted: Optional[str] = None
    estimated_completion_time: Optional[datetime] = None

    @property
    def available(self) -> bool:
        return self.estimated_time_remaining_ms is not None


def format_duration(ms: Optional[float]) -> Optional[str]:
    """
    Render milliseconds as the two largest non-zero units.

    Examples: ``"2h 14m"``, ``"45s"``, ``"1d 3h"``. Sub-second values render
    as ``"0s"``.
    """
    if ms is None:
        return None

    remaining = max(0, int(ms))
    parts = []
    for suffix, size in _UNITS:
        amount, remaining = divmod(remaining, size)
        if amount:
            parts.append(f"{amount}{suffix}")
        if len(parts) == 2:
            break

    return " ".join(parts) if parts else "0s"


def estimate(
    organizations_found: int,
    organizations_scraped: int,
    tenders_found: int,
    tenders_scraped: int,
    progress_percent: float,
    elapsed_ms: float,
    now: Optional[datetime] = None
) -> EtaEstimate:
    """
    Estimate the remaining time of a crawl.

    Args:
        organizations_found: Total organization units, 0 when unknown
        organizations_scraped: Organization units fully processed
        tenders_found: Total tenders discovered, 0 when unknown
        tenders_scraped: Tenders processed so far
        progress_percent: Progress in the 0-100 range
        elapsed_ms: Milliseconds since the session started
        now: Reference time for the completion timestamp

    Returns:
        EtaEstimate; every field is None when there is not enough data yet
    """
    if elapsed_ms is None or elapsed_ms <= 0:
        return EtaEstimate()

    now = now or datetime.now()
    elapsed_minutes = elapsed_ms / MS_PER_MINUTE
    # Fractions this small would overflow the ratio tiers
    fraction = progress_percent / 100.0 if progress_percent > MIN_PROGRESS_PERCENT else 0.0

    scraping_rate = None
    time_per_item = None
    if tenders_scraped > 0:
        scraping_rate = tenders_scraped / elapsed_minutes
        time_per_item = elapsed_ms / tenders_scraped

    tier = EtaTier.NONE
    eta_ms = None
    organizations_per_minute = None

    if organizations_scraped >= 1 and organizations_found > 0:
        tier = EtaTier.ORGANIZATION_RATE
        avg_ms_per_org = elapsed_ms / organizations_scraped
        remaining_orgs = max(0, organizations_found - organizations_scraped)
        eta_ms = remaining_orgs * avg_ms_per_org
        organizations_per_minute = organizations_scraped / elapsed_minutes

    elif tenders_scraped >= 1:
        target = None
        if tenders_found > 0:
            target = tenders_found
        elif fraction > 0:
            target = math.ceil(tenders_scraped / fraction)

        if target is not None:
            tier = EtaTier.ITEM_THROUGHPUT
            eta_ms = max(0, target - tenders_scraped) * time_per_item

    if tier is EtaTier.NONE and fraction > 0:
        tier = EtaTier.PROGRESS_RATIO
        eta_ms = elapsed_ms / fraction - elapsed_ms

    if tier is EtaTier.NONE:
        return EtaEstimate()

    eta_ms = min(MAX_ETA_MS, max(0, int(round(eta_ms))))
    return EtaEstimate(
        tier=tier,
        scraping_rate=round(scraping_rate, 4) if scraping_rate is not None else None,
        time_per_item=round(time_per_item, 2) if time_per_item is not None else None,
        organizations_per_minute=(
            round(organizations_per_minute, 4) if organizations_per_minute is not None else None
        ),
        estimated_time_remaining_ms=eta_ms,
        estimated_time_remaining_formatted=format_duration(eta_ms),
        estimated_completion_time=now + timedelta(milliseconds=eta_ms),
    )


def estimate_for_session(session, now: Optional[datetime] = None) -> EtaEstimate:
    """Estimate from a CrawlSession's counters and start time."""
    now = now or datetime.now()
    elapsed_ms = (now - session.started_at).total_seconds() * 1000
    return estimate(
        organizations_found=session.organizations_found,
        organizations_scraped=session.organizations_scraped,
        tenders_found=session.tenders_found,
        tenders_scraped=session.tenders_scraped,
        progress_percent=session.progress_percent,
        elapsed_ms=elapsed_ms,
        now=now,
    )


def apply_estimate(session, result: EtaEstimate) -> None:
    """Copy estimate fields onto a session, clearing them when unavailable."""
    session.scraping_rate = result.scraping_rate
    session.time_per_item = result.time_per_item
    session.organizations_per_minute = result.organizations_per_minute
    session.estimated_time_remaining_ms = result.estimated_time_remaining_ms
    session.estimated_time_remaining_formatted = result.estimated_time_remaining_formatted
    session.estimated_completion_time = result.estimated_completion_time
