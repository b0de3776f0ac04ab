"""
Abstract base classes and interfaces for tender crawlers.
"""

import copy
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Optional

from config import BrowserConfig
from tender_monitor.concurrent.cancellation import CancellationToken
from tender_monitor.data.models import TenderRecord
from tender_monitor.services.versioning import SaveResult, TenderVersioningService
from tender_monitor.sessions.models import ScrapingProvider
from tender_monitor.sessions.registry import SessionRegistry
from tender_monitor.utils.dates import DateRange
from tender_monitor.utils.errors import CrawlerError, DatabaseError, SessionError, ValidationError
from tender_monitor.utils.logging import get_business_logger
from .browser import BrowserPage, PlaywrightBrowser


NEXT_PAGE_MARKER = "data-crawler-next-page"

# Tags the pager's enabled "next" link with the marker attribute
MARK_NEXT_PAGE_SCRIPT = r"""
(marker) => {
  document.querySelectorAll("[" + marker + "]").forEach((el) => el.removeAttribute(marker));
  const anchors = Array.from(document.querySelectorAll("a"));
  const next = anchors.find((a) =>
    a.id === "linkFwd" ||
    a.matches("a.paginate_button.next") ||
    /^next/i.test((a.textContent || "").trim())
  );
  if (!next || next.classList.contains("disabled")) return false;
  next.setAttribute(marker, "1");
  return true;
}
"""


@dataclass
class OrganizationInfo:
    """An organisation offered by a portal's listing surface."""
    name: str
    id: str
    value: str
    tender_count: Optional[int] = None
    link: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def slugify(name: str) -> str:
    """
    Derive a stable organisation id.

    Lowercase, ``&`` becomes "and", other non-alphanumerics are dropped and
    whitespace turns into single hyphens.
    """
    slug = (name or "").lower().replace("&", "and")
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def collapse_whitespace(text: Optional[str]) -> str:
    return " ".join((text or "").split())


def dedupe_organizations(organizations: Iterable[OrganizationInfo]) -> List[OrganizationInfo]:
    """Keep the first organisation per id, preserving order."""
    seen = set()
    unique = []
    for org in organizations:
        if not org.id or org.id in seen:
            continue
        seen.add(org.id)
        unique.append(org)
    return unique


class CrawlRun:
    """
    Per-session state threaded through one ``execute`` call.

    Wraps the registry calls the engine makes and the cooperative stop
    checkpoint.
    """

    PAUSE_POLL_SECONDS = 0.5

    def __init__(
        self,
        registry: SessionRegistry,
        session_id: str,
        token: CancellationToken,
        date_range: Optional[DateRange] = None,
        per_org_limit: Optional[int] = None
    ):
        self.registry = registry
        self.session_id = session_id
        self.token = token
        self.date_range = date_range
        self.per_org_limit = per_org_limit

        self._timing_lock = threading.Lock()
        self._timing = {"total": 0.0, "count": 0}

    def should_stop(self) -> bool:
        """
        Checkpoint: block while paused, then report whether to unwind.

        A session that is no longer live (stopped, evicted or finished by
        someone else) counts as stopped.
        """
        while self.registry.is_paused(self.session_id):
            if self.token.wait(self.PAUSE_POLL_SECONDS):
                return True
        return self.token.is_cancelled() or not self.registry.is_live(self.session_id)

    def for_attempt(self, token: CancellationToken) -> "CrawlRun":
        """Copy of this run that checkpoints on ``token``; timing stays shared."""
        attempt = copy.copy(self)
        attempt.token = token
        return attempt

    def activity(self, organization: Optional[str], stage: str) -> None:
        self.registry.update_activity(self.session_id, organization=organization, stage=stage)

    def set_counters(self, **counters: int) -> None:
        self.registry.update_counters(self.session_id, **counters)

    def increment(self, **deltas: int) -> None:
        self.registry.increment_counters(self.session_id, **deltas)

    def progress(self, percent: float) -> None:
        self.registry.update_progress(self.session_id, percent)

    def record_response(self, seconds: float) -> None:
        """Fold one detail-page load time into the session's running average."""
        with self._timing_lock:
            self._timing["total"] += seconds
            self._timing["count"] += 1
            average = self._timing["total"] / self._timing["count"]
        self.registry.update_performance(self.session_id, avg_response_time=round(average, 3))


class BaseTenderCrawler(ABC):
    """
    Template for portal crawlers.

    Subclasses implement ``discover`` and ``run``; ``execute`` owns the
    session's terminal transition: COMPLETED when ``run`` finishes without a
    stop, FAILED on an unhandled error, nothing when stopped.
    """

    provider: ScrapingProvider = ScrapingProvider.CUSTOM
    logger_name = 'crawler_eprocure'

    def __init__(
        self,
        registry: SessionRegistry,
        versioning: TenderVersioningService,
        base_url: str,
        browser: Optional[PlaywrightBrowser] = None,
        browser_config: Optional[BrowserConfig] = None,
        provider: Optional[ScrapingProvider] = None
    ):
        """
        Initialize crawler.

        Args:
            registry: Session registry receiving progress
            versioning: Service that stores scraped tenders
            base_url: Listing URL of the portal
            browser: Page factory; a Playwright browser by default
            browser_config: Timeouts and delays
            provider: Provider tag written on records
        """
        self.registry = registry
        self.versioning = versioning
        self.base_url = base_url
        self.browser_config = browser_config or BrowserConfig()
        self.browser = browser or PlaywrightBrowser(self.browser_config)
        if provider is not None:
            self.provider = ScrapingProvider.parse(provider)
        self.logger = get_business_logger(self.logger_name)

    @abstractmethod
    def discover(self, target: Optional[str] = None) -> List[OrganizationInfo]:
        """
        List the organisations the portal offers.

        Raises:
            CrawlerError: If the listing cannot be loaded
        """
        pass

    @abstractmethod
    def run(self, run: CrawlRun, target: str, organizations: List[str]) -> None:
        """Drive the per-organisation loop; return early when stopped."""
        pass

    def execute(
        self,
        target: Optional[str],
        organizations: List[str],
        date_range: Optional[DateRange] = None,
        per_org_limit: Optional[int] = None,
        session_id: Optional[str] = None
    ) -> None:
        """
        Run a crawl to a terminal session state.

        Args:
            target: Listing URL, defaults to the crawler's base URL
            organizations: Organisation names or ids to crawl
            date_range: Inclusive published-date filter
            per_org_limit: Maximum tenders per organisation
            session_id: Live session receiving progress
        """
        try:
            token = self.registry.cancellation_token(session_id)
        except SessionError as e:
            self.logger.warning(f"Not starting crawl: {e}")
            return

        run = CrawlRun(self.registry, session_id, token, date_range, per_org_limit)
        self.logger.info(
            f"Starting {self.provider.value} crawl for session {session_id}: "
            f"{len(organizations)} organisations"
        )

        try:
            self.run(run, target or self.base_url, list(organizations))
        except Exception as e:
            self.logger.error(f"Crawl failed for session {session_id}: {e}")
            self.registry.fail(session_id, str(e))
            return

        if run.should_stop():
            self.logger.info(f"Crawl for session {session_id} stopped before completion")
            return

        self.registry.complete(session_id, progress_percent=100)
        self.logger.info(f"Crawl for session {session_id} completed")

    def save_record(self, run: CrawlRun, record: TenderRecord) -> Optional[SaveResult]:
        """Store a tender; a failed write is logged and yields None."""
        record.session_id = run.session_id
        try:
            return self.versioning.save(record)
        except (DatabaseError, ValidationError) as e:
            self.logger.error(f"Failed to save tender {record.tender_id}: {e}")
            return None

    def wait_ms(self, run: CrawlRun, milliseconds: int) -> bool:
        """Sleep unless cancelled; True if cancelled meanwhile."""
        if milliseconds <= 0:
            return run.token.is_cancelled()
        return run.token.wait(milliseconds / 1000.0)

    def go_to_next_page(self, page: BrowserPage, list_selector: str) -> bool:
        """Follow the pager's "next" control; False on the last page."""
        if not page.evaluate(MARK_NEXT_PAGE_SCRIPT, NEXT_PAGE_MARKER):
            return False
        page.click_and_wait(f"[{NEXT_PAGE_MARKER}]")
        return page.try_wait_for(list_selector)

    def navigate_home(self, page: BrowserPage, url: str) -> None:
        """Best-effort recovery navigation back to a known listing page."""
        try:
            page.navigate(url)
        except CrawlerError as e:
            self.logger.warning(f"Recovery navigation to {url} failed: {e}")


class CrawlerRegistry:
    """Registry of crawler classes by provider."""

    def __init__(self):
        self._crawlers: Dict[ScrapingProvider, type] = {}
        self.logger = get_business_logger('crawler_eprocure')

    def register(self, provider, crawler_class: type) -> None:
        """
        Register a crawler class.

        Raises:
            CrawlerError: If the class does not extend BaseTenderCrawler
        """
        if not issubclass(crawler_class, BaseTenderCrawler):
            raise CrawlerError(
                "Crawler class must extend BaseTenderCrawler",
                {"provider": str(provider), "crawler_class": str(crawler_class)}
            )
        provider = ScrapingProvider.parse(provider)
        self._crawlers[provider] = crawler_class
        self.logger.debug(f"Crawler registered: {provider.value} -> {crawler_class.__name__}")

    def get_crawler_class(self, provider) -> type:
        if not self.is_registered(provider):
            raise CrawlerError(
                f"No crawler registered for provider '{provider}'",
                {"available_providers": self.list_providers()}
            )
        return self._crawlers[ScrapingProvider.parse(provider)]

    def list_providers(self) -> List[str]:
        return [provider.value for provider in self._crawlers]

    def is_registered(self, provider) -> bool:
        try:
            return ScrapingProvider.parse(provider) in self._crawlers
        except ValueError:
            return False
