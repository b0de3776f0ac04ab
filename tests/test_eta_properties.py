"""
Tests for tiered remaining-time estimation.
"""

from datetime import datetime, timedelta

import pytest
from hypothesis import given, strategies as st, settings

from tender_monitor.sessions.eta import (
    EtaTier,
    estimate,
    format_duration,
    MS_PER_DAY,
    MS_PER_HOUR,
    MS_PER_MINUTE,
    MS_PER_SECOND,
)


NOW = datetime(2025, 3, 1, 10, 0, 0)


@st.composite
def counter_strategy(draw):
    """Generate a consistent set of session counters."""
    organizations_found = draw(st.integers(min_value=0, max_value=200))
    organizations_scraped = draw(st.integers(min_value=0, max_value=max(organizations_found, 0)))
    tenders_found = draw(st.integers(min_value=0, max_value=5000))
    tenders_scraped = draw(st.integers(min_value=0, max_value=5000))
    return {
        "organizations_found": organizations_found,
        "organizations_scraped": organizations_scraped,
        "tenders_found": tenders_found,
        "tenders_scraped": tenders_scraped,
        "progress_percent": draw(st.floats(min_value=0, max_value=100, allow_nan=False)),
        "elapsed_ms": draw(st.floats(min_value=1, max_value=7 * MS_PER_DAY, allow_nan=False)),
    }


class TestEtaTiers:
    """Tier selection and arithmetic."""

    def test_item_throughput_tier_before_any_organization_finishes(self):
        result = estimate(
            organizations_found=4,
            organizations_scraped=0,
            tenders_found=20,
            tenders_scraped=5,
            progress_percent=0,
            elapsed_ms=60000,
            now=NOW
        )

        assert result.tier is EtaTier.ITEM_THROUGHPUT
        assert result.scraping_rate == 5.0
        assert result.time_per_item == 12000
        assert result.estimated_time_remaining_ms == 15 * 12000
        assert result.estimated_time_remaining_formatted == "3m"
        assert result.estimated_completion_time == NOW + timedelta(minutes=3)

    def test_no_data_clears_every_field(self):
        result = estimate(0, 0, 0, 0, 0, 60000, now=NOW)

        assert result.tier is EtaTier.NONE
        assert not result.available
        assert result.scraping_rate is None
        assert result.time_per_item is None
        assert result.estimated_time_remaining_ms is None
        assert result.estimated_time_remaining_formatted is None
        assert result.estimated_completion_time is None

    def test_organization_rate_wins_when_available(self):
        result = estimate(
            organizations_found=10,
            organizations_scraped=2,
            tenders_found=1000,
            tenders_scraped=999,
            progress_percent=20,
            elapsed_ms=2 * MS_PER_MINUTE,
            now=NOW
        )

        assert result.tier is EtaTier.ORGANIZATION_RATE
        assert result.organizations_per_minute == 1.0
        assert result.estimated_time_remaining_ms == 8 * MS_PER_MINUTE
        assert result.estimated_time_remaining_formatted == "8m"

    def test_item_target_derived_from_progress(self):
        result = estimate(0, 0, 0, 10, 50.0, 100000, now=NOW)

        assert result.tier is EtaTier.ITEM_THROUGHPUT
        assert result.estimated_time_remaining_ms == 100000

    def test_progress_ratio_tier(self):
        result = estimate(0, 0, 0, 0, 25.0, 60000, now=NOW)

        assert result.tier is EtaTier.PROGRESS_RATIO
        assert result.estimated_time_remaining_ms == 180000
        assert result.scraping_rate is None

    def test_zero_elapsed_gives_nothing(self):
        assert not estimate(5, 1, 10, 5, 50, 0, now=NOW).available

    @given(counter_strategy())
    @settings(max_examples=50)
    def test_estimate_is_non_negative_and_consistent(self, counters):
        result = estimate(now=NOW, **counters)

        if not result.available:
            assert result.estimated_completion_time is None
            assert result.estimated_time_remaining_formatted is None
            return

        assert result.estimated_time_remaining_ms >= 0
        assert result.estimated_completion_time == NOW + timedelta(
            milliseconds=result.estimated_time_remaining_ms
        )
        assert result.estimated_time_remaining_formatted == format_duration(
            result.estimated_time_remaining_ms
        )
        if counters["organizations_scraped"] >= 1 and counters["organizations_found"] > 0:
            assert result.tier is EtaTier.ORGANIZATION_RATE

    @given(counter_strategy())
    @settings(max_examples=30)
    def test_estimate_is_deterministic(self, counters):
        assert estimate(now=NOW, **counters) == estimate(now=NOW, **counters)


class TestFormatDuration:
    """Two largest non-zero units."""

    @pytest.mark.parametrize("ms, expected", [
        (2 * MS_PER_HOUR + 14 * MS_PER_MINUTE + 5 * MS_PER_SECOND, "2h 14m"),
        (45 * MS_PER_SECOND, "45s"),
        (MS_PER_DAY + MS_PER_HOUR + MS_PER_MINUTE + MS_PER_SECOND, "1d 1h"),
        (MS_PER_DAY + 30 * MS_PER_SECOND, "1d 30s"),
        (MS_PER_HOUR, "1h"),
        (500, "0s"),
        (0, "0s"),
        (-1000, "0s"),
    ])
    def test_known_values(self, ms, expected):
        assert format_duration(ms) == expected

    def test_none_passes_through(self):
        assert format_duration(None) is None

    @given(st.integers(min_value=0, max_value=365 * MS_PER_DAY))
    def test_at_most_two_units(self, ms):
        parts = format_duration(ms).split()
        assert 1 <= len(parts) <= 2
        assert all(part[-1] in "dhms" for part in parts)
