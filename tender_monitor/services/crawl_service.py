"""
Session control API: start, stop and inspect crawl sessions.

Each crawl runs its engine on a dedicated daemon thread; all progress flows
through the SessionRegistry.
"""

import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from config import SystemConfig
from tender_monitor.crawlers import BaseTenderCrawler, OrganizationInfo, create_crawler, default_registry
from tender_monitor.data.models import TenderRecord
from tender_monitor.sessions.models import CrawlSession, ScrapingProvider
from tender_monitor.sessions.registry import SessionRegistry
from tender_monitor.utils.dates import DateRange
from tender_monitor.utils.errors import CrawlerError, ValidationError, handle_error
from tender_monitor.utils.logging import get_business_logger
from .versioning import TenderVersioningService


logger = get_business_logger('crawl_service')


class CrawlService:
    """Starts crawl engines and exposes session and record reads."""

    def __init__(
        self,
        registry: SessionRegistry,
        versioning: TenderVersioningService,
        config: Optional[SystemConfig] = None,
        crawler_factory: Optional[Callable[[ScrapingProvider], BaseTenderCrawler]] = None
    ):
        """
        Initialize the service.

        Args:
            registry: Session registry owning live state
            versioning: Record versioning service
            config: System configuration
            crawler_factory: Builds a crawler per provider; defaults to
                ``create_crawler`` with Playwright pages
        """
        self.registry = registry
        self.versioning = versioning
        self.config = config or SystemConfig()
        self._crawler_factory = crawler_factory or self._default_factory

        self._threads: Dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    def _default_factory(self, provider: ScrapingProvider) -> BaseTenderCrawler:
        return create_crawler(provider, self.registry, self.versioning, self.config)

    # Session control

    def create(
        self,
        provider,
        target: Optional[str] = None,
        organizations: Optional[List[str]] = None,
        date_range: Optional[DateRange] = None,
        per_org_limit: Optional[int] = None,
        session_id: Optional[str] = None,
        name: Optional[str] = None,
        description: Optional[str] = None
    ) -> str:
        """
        Create a session and start its crawl in the background.

        Args:
            provider: ScrapingProvider or its name
            target: Listing URL, defaults to the provider's configured URL
            organizations: Organisation names or ids to crawl
            date_range: Inclusive published-date filter
            per_org_limit: Maximum tenders per organisation (per year for CPPP)
            session_id: Caller supplied id

        Returns:
            Id of the new session

        Raises:
            ValidationError: If the request is malformed
            CrawlerError: If the provider has no crawler
            SessionError: If the session id is already live
        """
        try:
            provider = ScrapingProvider.parse(provider)
        except ValueError:
            raise ValidationError(f"Unknown provider: {provider}", {"provider": str(provider)})

        errors = []
        organizations = [org.strip() for org in (organizations or []) if org and org.strip()]
        if not organizations:
            errors.append("At least one organisation is required")
        if per_org_limit is not None and per_org_limit < 1:
            errors.append("per_org_limit must be positive")
        if errors:
            raise ValidationError("Invalid crawl request", {"errors": errors})

        if not default_registry.is_registered(provider):
            raise CrawlerError(
                f"No crawler available for provider {provider.value}",
                {"available_providers": default_registry.list_providers()}
            )

        crawler = self._crawler_factory(provider)
        session = self.registry.create_session(
            provider,
            session_id=session_id,
            name=name,
            description=description,
            base_url=target or crawler.base_url,
            organizations=organizations,
            date_range=date_range,
            per_org_limit=per_org_limit
        )

        thread = threading.Thread(
            target=self._run_crawl,
            args=(crawler, session.id, target, organizations, date_range, per_org_limit),
            name=f"crawl-{session.id}",
            daemon=True
        )
        with self._lock:
            self._prune_finished()
            self._threads[session.id] = thread
        thread.start()

        logger.info(f"Started {provider.value} crawl {session.id} for {len(organizations)} organisations")
        return session.id

    def _run_crawl(self, crawler: BaseTenderCrawler, session_id: str, target: Optional[str],
                   organizations: List[str], date_range: Optional[DateRange],
                   per_org_limit: Optional[int]) -> None:
        try:
            crawler.execute(target, organizations, date_range=date_range,
                            per_org_limit=per_org_limit, session_id=session_id)
        except Exception as e:
            # execute() finalizes the session itself; this guards the thread
            handle_error(e, logger, {"session_id": session_id}, reraise=False)
            self.registry.fail(session_id, str(e))

    def stop(self, session_id: str) -> bool:
        """Request a cooperative stop; False if the session is not live."""
        stopped = self.registry.stop(session_id)
        if stopped:
            logger.info(f"Stop requested for session {session_id}")
        return stopped

    def pause(self, session_id: str) -> bool:
        return self.registry.pause(session_id)

    def resume(self, session_id: str) -> bool:
        return self.registry.resume(session_id)

    def is_running(self, session_id: str) -> bool:
        with self._lock:
            thread = self._threads.get(session_id)
        return thread is not None and thread.is_alive()

    def wait(self, session_id: str, timeout: Optional[float] = None) -> bool:
        """Join a crawl thread; True if it finished within ``timeout``."""
        with self._lock:
            thread = self._threads.get(session_id)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    # Reads

    def get(self, session_id: str) -> Optional[CrawlSession]:
        return self.registry.get(session_id)

    def list_all(self) -> List[CrawlSession]:
        return self.registry.list_all()

    def get_stats(self) -> Dict[str, Any]:
        return self.registry.get_stats()

    def get_overview(self) -> Dict[str, Any]:
        return self.registry.get_overview()

    def discover(self, provider, target: Optional[str] = None) -> List[OrganizationInfo]:
        """
        List the organisations a portal offers; no session is created.

        Raises:
            CrawlerError: If the portal cannot be loaded
        """
        crawler = self._crawler_factory(ScrapingProvider.parse(provider))
        return crawler.discover(target)

    def list_latest(
        self,
        provider: Optional[str] = None,
        session_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> Tuple[List[TenderRecord], int]:
        if provider is not None:
            provider = ScrapingProvider.parse(provider).value
        return self.versioning.list_latest(provider=provider, session_id=session_id,
                                           limit=limit, offset=offset)

    # Lifecycle

    def _prune_finished(self) -> None:
        for session_id in [sid for sid, thread in self._threads.items() if not thread.is_alive()]:
            del self._threads[session_id]

    def shutdown(self, timeout: float = 30.0) -> List[str]:
        """
        Stop every running crawl and wait for the threads.

        Returns:
            Ids of sessions whose threads did not finish in time
        """
        with self._lock:
            threads = dict(self._threads)

        for session_id, thread in threads.items():
            if thread.is_alive():
                self.registry.stop(session_id)

        deadline = time.monotonic() + timeout
        lingering = []
        for session_id, thread in threads.items():
            thread.join(max(0.0, deadline - time.monotonic()))
            if thread.is_alive():
                lingering.append(session_id)

        with self._lock:
            self._prune_finished()

        if lingering:
            logger.warning(f"Crawl threads still running after shutdown: {lingering}")
        else:
            logger.info("Crawl service shut down")
        return lingering
