"""
Tests for crawl session persistence on SQLite.
"""

import os
import tempfile
from datetime import datetime, date

from tender_monitor.data.sqlite_database import SQLiteDatabaseManager
from tender_monitor.data.session_repository import SessionRepository
from tender_monitor.data.database_factory import DatabaseFactory
from tender_monitor.sessions.models import CrawlSession, ScrapingProvider, SessionStatus
from tender_monitor.utils.dates import DateRange
from tender_monitor.utils.errors import DatabaseError
from config import DatabaseConfig

import pytest


def make_session(session_id: str, started_at: datetime, **overrides) -> CrawlSession:
    values = dict(
        id=session_id,
        provider=ScrapingProvider.EPROCURE,
        name="EPROCURE crawl",
        started_at=started_at,
        last_activity_at=started_at,
        organizations=["Indian Railways"],
        date_range=DateRange.from_dates(date(2025, 1, 1), date(2025, 3, 31)),
        per_org_limit=25,
    )
    values.update(overrides)
    return CrawlSession(**values)


class TestSessionRepository:

    def setup_method(self):
        fd, self.db_path = tempfile.mkstemp(suffix=".db", prefix="tender_sessions_")
        os.close(fd)
        self.db_manager = SQLiteDatabaseManager(self.db_path)
        self.db_manager.initialize()
        self.repository = SessionRepository(self.db_manager)

    def teardown_method(self):
        self.db_manager.close()
        if os.path.exists(self.db_path):
            os.unlink(self.db_path)

    def test_upsert_then_get_round_trips_snapshot(self):
        session = make_session("s1", datetime(2025, 3, 1, 9, 0), tenders_scraped=12,
                               progress_percent=33.333, current_stage="Scraping")

        assert self.repository.upsert_sessions([session]) == 1
        loaded = self.repository.get_session("s1")

        assert loaded.provider is ScrapingProvider.EPROCURE
        assert loaded.status is SessionStatus.RUNNING
        assert loaded.tenders_scraped == 12
        assert loaded.progress_percent == 33.33
        assert loaded.started_at == datetime(2025, 3, 1, 9, 0)
        assert loaded.organizations == ["Indian Railways"]
        assert loaded.date_range.start == datetime(2025, 1, 1)
        assert loaded.date_range.end.date() == date(2025, 3, 31)
        assert loaded.per_org_limit == 25

    def test_upsert_overwrites_by_id(self):
        session = make_session("s1", datetime(2025, 3, 1, 9, 0))
        self.repository.upsert_session(session)

        session.status = SessionStatus.COMPLETED
        session.completed_at = datetime(2025, 3, 1, 9, 30)
        session.tenders_saved = 4
        self.repository.upsert_session(session)

        loaded = self.repository.get_session("s1")
        assert loaded.status is SessionStatus.COMPLETED
        assert loaded.duration_ms == 30 * 60 * 1000
        assert loaded.tenders_saved == 4
        assert len(self.repository.list_sessions()) == 1

    def test_list_sessions_newest_first_with_filters(self):
        self.repository.upsert_sessions([
            make_session("old", datetime(2025, 1, 1)),
            make_session("new", datetime(2025, 2, 1)),
            make_session("cppp", datetime(2025, 1, 15), provider=ScrapingProvider.EPROCURE_CPPP),
        ])

        assert [s.id for s in self.repository.list_sessions()] == ["new", "cppp", "old"]
        assert [s.id for s in self.repository.list_sessions(limit=1)] == ["new"]
        assert [s.id for s in self.repository.list_sessions(provider="EPROCURE_CPPP")] == ["cppp"]

    def test_missing_session_is_none(self):
        assert self.repository.get_session("missing") is None
        assert not self.repository.delete_session("missing")

    def test_delete_session(self):
        self.repository.upsert_session(make_session("s1", datetime(2025, 3, 1)))
        assert self.repository.delete_session("s1")
        assert self.repository.get_session("s1") is None

    def test_health_and_stats(self):
        assert self.db_manager.health_check()
        stats = self.db_manager.get_connection_stats()
        assert stats["status"] == "active"
        assert stats["sessions_count"] == 0
        assert stats["latest_tenders_count"] == 0


class TestDatabaseFactory:

    def test_sqlite_manager_created(self, temp_db_path):
        manager = DatabaseFactory.create_database_manager(
            DatabaseConfig(db_type="sqlite", sqlite_path=temp_db_path)
        )
        assert isinstance(manager, SQLiteDatabaseManager)

    def test_unknown_type_rejected(self):
        config = DatabaseConfig()
        config.db_type = "oracle"
        with pytest.raises(DatabaseError):
            DatabaseFactory.create_database_manager(config)
