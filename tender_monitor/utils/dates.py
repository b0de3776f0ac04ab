"""
Date helpers for e-procurement portal listings.

Portal tables render dates as "09-Oct-2025 05:20 PM", "09-Oct-2025" or
"09/10/2025". Range filtering is fail-open: a row whose date cannot be
parsed is kept.
"""

from dataclasses import dataclass
from datetime import datetime, date, time
from typing import Optional, List, Union


PORTAL_DATE_FORMATS = (
    "%d-%b-%Y %I:%M %p",
    "%d-%b-%Y %H:%M",
    "%d-%b-%Y",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
)


@dataclass
class DateRange:
    """Inclusive date range used to filter listing rows."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @classmethod
    def from_dates(cls, start: Optional[Union[date, datetime]],
                   end: Optional[Union[date, datetime]]) -> "DateRange":
        """
        Build a range covering whole days.

        Plain dates expand to 00:00 for the start and end-of-day for the end,
        so a row published at 05:20 PM on the end date is included.
        """
        return cls(start=_as_start(start), end=_as_end(end))

    @property
    def bounds(self):
        """Return (lower, upper) regardless of the order the caller used."""
        if self.start and self.end and self.start > self.end:
            return self.end, self.start
        return self.start, self.end

    def years(self) -> List[int]:
        """Calendar years touched by the range; current year if unbounded."""
        lower, upper = self.bounds
        current = datetime.now().year
        first = lower.year if lower else (upper.year if upper else current)
        last = upper.year if upper else (lower.year if lower else current)
        return list(range(min(first, last), max(first, last) + 1))

    def to_dict(self):
        return {
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
        }


def _as_start(value):
    if value is None or isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def _as_end(value):
    if value is None or isinstance(value, datetime):
        return value
    return datetime.combine(value, time.max)


def parse_portal_date(value) -> Optional[datetime]:
    """
    Parse a date string as rendered by the portals.

    Args:
        value: Raw cell text, datetime, or None

    Returns:
        Parsed datetime, or None when the text matches no known format
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)

    text = " ".join(str(value).replace("\u00a0", " ").split())
    if not text:
        return None

    for fmt in PORTAL_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    # Comparisons happen against naive range bounds
    return parsed.replace(tzinfo=None) if parsed.tzinfo else parsed


def is_date_in_range(value, date_range: Optional[DateRange]) -> bool:
    """
    Check whether a listing date falls inside the range, inclusive.

    Rows with no range, or with an unparseable date, are included.
    """
    if date_range is None or (date_range.start is None and date_range.end is None):
        return True

    parsed = parse_portal_date(value)
    if parsed is None:
        return True

    lower, upper = date_range.bounds
    if lower is not None and parsed < lower:
        return False
    if upper is not None and parsed > upper:
        return False
    return True


def to_iso(value) -> Optional[str]:
    """Render a datetime as ISO-8601, passing None through."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def from_iso(value) -> Optional[datetime]:
    """Parse an ISO-8601 string as stored in the database."""
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
