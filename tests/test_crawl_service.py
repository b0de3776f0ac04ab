"""
Tests for the session control API.
"""

import threading
from unittest.mock import Mock

import pytest

from tender_monitor.crawlers import BaseTenderCrawler, OrganizationInfo
from tender_monitor.data.models import TenderRecord
from tender_monitor.services.crawl_service import CrawlService
from tender_monitor.sessions import SessionRegistry, SessionStatus, ScrapingProvider
from tender_monitor.utils.dates import DateRange
from tender_monitor.utils.errors import CrawlerError, SessionError, ValidationError


class InMemorySessionRepository:
    def __init__(self):
        self.sessions = {}
        self._lock = threading.Lock()

    def upsert_sessions(self, sessions):
        with self._lock:
            for session in sessions:
                self.sessions[session.id] = session.snapshot()
        return len(self.sessions)

    def get_session(self, session_id):
        with self._lock:
            session = self.sessions.get(session_id)
        return session.snapshot() if session else None

    def list_sessions(self, limit=None, provider=None):
        with self._lock:
            return [session.snapshot() for session in self.sessions.values()]


class ScriptedCrawler(BaseTenderCrawler):
    """Crawler whose run is driven by the test instead of a portal."""

    def __init__(self, registry, behaviour="complete"):
        super().__init__(registry, Mock(), "https://portal.test", browser=Mock())
        self.behaviour = behaviour
        self.started = threading.Event()
        self.calls = []

    def execute(self, *args, **kwargs):
        if self.behaviour == "crash":
            raise RuntimeError("thread crashed")
        super().execute(*args, **kwargs)

    def discover(self, target=None):
        return [OrganizationInfo(name="Org A", id="org-a", value="Org A", tender_count=3)]

    def run(self, run, target, organizations):
        self.calls.append((target, organizations, run.date_range, run.per_org_limit))
        run.set_counters(organizations_found=len(organizations))
        self.started.set()

        if self.behaviour == "fail":
            raise CrawlerError("portal unreachable")
        if self.behaviour == "block":
            # Hold until stopped
            while not run.should_stop():
                run.token.wait(0.01)
            return

        for _ in organizations:
            run.increment(organizations_scraped=1, tenders_found=2, tenders_scraped=2, tenders_saved=2)


class TestCrawlService:

    def setup_method(self):
        self.registry = SessionRegistry(InMemorySessionRepository())
        self.crawlers = []
        self.behaviour = "complete"
        self.versioning = Mock()
        self.service = CrawlService(self.registry, self.versioning, crawler_factory=self._factory)

    def teardown_method(self):
        self.service.shutdown(timeout=5)

    def _factory(self, provider):
        crawler = ScriptedCrawler(self.registry, self.behaviour)
        crawler.provider = provider
        self.crawlers.append(crawler)
        return crawler

    def test_create_runs_crawl_to_completion(self):
        date_range = DateRange.from_dates(None, None)
        session_id = self.service.create("eprocure", organizations=["Org A", " Org B "],
                                         date_range=date_range, per_org_limit=5)

        assert self.service.wait(session_id, timeout=5)
        session = self.service.get(session_id)
        assert session.status is SessionStatus.COMPLETED
        assert session.provider is ScrapingProvider.EPROCURE
        assert session.organizations_scraped == 2
        assert session.tenders_saved == 4
        assert session.progress_percent == 100.0
        assert self.crawlers[0].calls == [(None, ["Org A", "Org B"], date_range, 5)]

    def test_session_records_request(self):
        self.behaviour = "block"
        session_id = self.service.create(ScrapingProvider.ETENDER, target="https://other.test",
                                         organizations=["Org A"], session_id="custom-id", name="nightly")
        assert session_id == "custom-id"
        assert self.crawlers[0].started.wait(5)

        session = self.service.get(session_id)
        assert session.base_url == "https://other.test"
        assert session.name == "nightly"
        assert session.organizations == ["Org A"]
        assert self.service.is_running(session_id)
        assert [s.id for s in self.service.list_all()] == ["custom-id"]

    def test_duplicate_live_session_id_rejected(self):
        self.behaviour = "block"
        self.service.create("EPROCURE", organizations=["Org A"], session_id="dup")
        with pytest.raises(SessionError):
            self.service.create("EPROCURE", organizations=["Org A"], session_id="dup")

    @pytest.mark.parametrize("organizations, limit", [
        ([], None),
        (["  ", ""], None),
        (["Org A"], 0),
    ])
    def test_invalid_requests(self, organizations, limit):
        with pytest.raises(ValidationError):
            self.service.create("EPROCURE", organizations=organizations, per_org_limit=limit)
        assert self.crawlers == []

    def test_unknown_provider(self):
        with pytest.raises(ValidationError) as excinfo:
            self.service.create("NOPE", organizations=["Org A"])
        assert excinfo.value.details["provider"] == "NOPE"

    def test_provider_without_crawler(self):
        with pytest.raises(CrawlerError):
            self.service.create("CUSTOM", organizations=["Org A"])

    def test_crawl_error_fails_session(self):
        self.behaviour = "fail"
        session_id = self.service.create("EPROCURE", organizations=["Org A"])

        assert self.service.wait(session_id, timeout=5)
        session = self.service.get(session_id)
        assert session.status is SessionStatus.FAILED
        assert session.error_message == "portal unreachable"

    def test_crashed_crawl_thread_fails_session(self):
        self.behaviour = "crash"
        session_id = self.service.create("EPROCURE", organizations=["Org A"])

        assert self.service.wait(session_id, timeout=5)
        session = self.service.get(session_id)
        assert session.status is SessionStatus.FAILED
        assert session.error_message == "thread crashed"

    def test_stop_ends_session_as_stopped(self):
        self.behaviour = "block"
        session_id = self.service.create("EPROCURE_CPPP", organizations=["Org A"])
        assert self.crawlers[0].started.wait(5)

        assert self.service.stop(session_id)
        assert self.service.wait(session_id, timeout=5)
        assert self.service.get(session_id).status is SessionStatus.STOPPED
        assert not self.service.stop(session_id)

    def test_pause_and_resume(self):
        self.behaviour = "block"
        session_id = self.service.create("EPROCURE", organizations=["Org A"])
        assert self.crawlers[0].started.wait(5)

        assert self.service.pause(session_id)
        assert self.service.get(session_id).status is SessionStatus.PAUSED
        assert self.service.resume(session_id)
        assert self.service.get(session_id).status is SessionStatus.RUNNING

    def test_shutdown_stops_running_crawls(self):
        self.behaviour = "block"
        ids = [self.service.create("EPROCURE", organizations=["Org A"]) for _ in range(3)]
        for crawler in self.crawlers:
            assert crawler.started.wait(5)

        assert self.service.shutdown(timeout=5) == []
        for session_id in ids:
            assert self.service.get(session_id).status is SessionStatus.STOPPED
            assert not self.service.is_running(session_id)

    def test_wait_for_unknown_session(self):
        assert self.service.wait("never-started", timeout=0.1)

    def test_discover_creates_no_session(self):
        organizations = self.service.discover("ETENDER")
        assert [org.id for org in organizations] == ["org-a"]
        assert self.registry.list_all() == []

    def test_list_latest_normalizes_provider(self):
        record = TenderRecord(tender_id="T1", tender_ref_no="R1", provider="EPROCURE")
        self.versioning.list_latest.return_value = ([record], 1)

        records, total = self.service.list_latest("eprocure", limit=10, offset=0)

        assert (records, total) == ([record], 1)
        self.versioning.list_latest.assert_called_once_with(provider="EPROCURE", session_id=None,
                                                            limit=10, offset=0)

    def test_stats_and_overview(self):
        session_id = self.service.create("EPROCURE", organizations=["Org A"])
        assert self.service.wait(session_id, timeout=5)

        stats = self.service.get_stats()
        overview = self.service.get_overview()
        assert isinstance(stats, dict)
        assert isinstance(overview, dict)
