"""
Browser automation capability used by the crawl engines.

Engines only talk to ``BrowserPage``; ``PlaywrightBrowser`` provides the
real implementation on top of the Playwright sync API. Playwright sync
objects are bound to the thread that created them, so every ``open_page()``
call starts its own driver, browser and context in the calling thread.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from playwright.sync_api import (
    sync_playwright,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
    Page,
)

from config import BrowserConfig
from tender_monitor.utils.errors import CrawlerError
from tender_monitor.utils.logging import get_business_logger


logger = get_business_logger('browser')


class BrowserPage(ABC):
    """A single page/tab the engine drives."""

    @abstractmethod
    def navigate(self, url: str, timeout_ms: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def wait_for(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        """
        Wait until ``selector`` matches.

        Raises:
            CrawlerError: If the selector does not appear in time
        """
        pass

    @abstractmethod
    def evaluate(self, script: str, arg: Any = None) -> Any:
        pass

    @abstractmethod
    def click(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def click_and_wait(self, selector: str, timeout_ms: Optional[int] = None) -> bool:
        """Click and wait for a navigation; return False if none happened."""
        pass

    @abstractmethod
    def type(self, selector: str, text: str) -> None:
        """Replace the field's content with ``text``."""
        pass

    @abstractmethod
    def select_option(self, selector: str, value: str) -> None:
        pass

    @abstractmethod
    def go_back(self, timeout_ms: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def reload(self, timeout_ms: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def current_url(self) -> str:
        pass

    @abstractmethod
    def is_present(self, selector: str) -> bool:
        pass

    def try_wait_for(self, selector: str, timeout_ms: Optional[int] = None) -> bool:
        try:
            self.wait_for(selector, timeout_ms)
            return True
        except CrawlerError:
            return False

    def close(self) -> None:
        pass


class PlaywrightPage(BrowserPage):
    """BrowserPage backed by a Playwright sync page."""

    def __init__(self, page: Page, config: BrowserConfig):
        self._page = page
        self.config = config

    def _nav_timeout(self, timeout_ms: Optional[int]) -> int:
        return timeout_ms if timeout_ms is not None else self.config.navigation_timeout_ms

    def _element_timeout(self, timeout_ms: Optional[int]) -> int:
        return timeout_ms if timeout_ms is not None else self.config.element_timeout_ms

    def navigate(self, url: str, timeout_ms: Optional[int] = None) -> None:
        try:
            self._page.goto(url, wait_until="domcontentloaded", timeout=self._nav_timeout(timeout_ms))
        except PlaywrightError as e:
            raise CrawlerError(f"Navigation failed: {url}", {"url": url, "error": str(e)})

    def wait_for(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        try:
            self._page.wait_for_selector(selector, timeout=self._element_timeout(timeout_ms))
        except PlaywrightError as e:
            raise CrawlerError(
                f"Selector did not appear: {selector}",
                {"selector": selector, "url": self._page.url, "error": str(e)}
            )

    def evaluate(self, script: str, arg: Any = None) -> Any:
        try:
            return self._page.evaluate(script, arg)
        except PlaywrightError as e:
            raise CrawlerError("Page script failed", {"url": self._page.url, "error": str(e)})

    def click(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        try:
            self._page.click(selector, timeout=self._element_timeout(timeout_ms))
        except PlaywrightError as e:
            raise CrawlerError(f"Click failed: {selector}", {"selector": selector, "error": str(e)})

    def click_and_wait(self, selector: str, timeout_ms: Optional[int] = None) -> bool:
        try:
            with self._page.expect_navigation(wait_until="domcontentloaded",
                                              timeout=self._nav_timeout(timeout_ms)):
                self._page.click(selector, timeout=self.config.element_timeout_ms)
            return True
        except PlaywrightTimeoutError:
            # Some forms re-render in place without navigating
            return False
        except PlaywrightError as e:
            raise CrawlerError(f"Click failed: {selector}", {"selector": selector, "error": str(e)})

    def type(self, selector: str, text: str) -> None:
        try:
            self._page.fill(selector, text, timeout=self.config.element_timeout_ms)
        except PlaywrightError as e:
            raise CrawlerError(f"Typing failed: {selector}", {"selector": selector, "error": str(e)})

    def select_option(self, selector: str, value: str) -> None:
        try:
            self._page.select_option(selector, value, timeout=self.config.element_timeout_ms)
        except PlaywrightError as e:
            raise CrawlerError(f"Select failed: {selector}", {"selector": selector, "value": value, "error": str(e)})

    def go_back(self, timeout_ms: Optional[int] = None) -> None:
        try:
            self._page.go_back(wait_until="domcontentloaded", timeout=self._nav_timeout(timeout_ms))
        except PlaywrightError as e:
            raise CrawlerError("Back navigation failed", {"url": self._page.url, "error": str(e)})

    def reload(self, timeout_ms: Optional[int] = None) -> None:
        try:
            self._page.reload(wait_until="domcontentloaded", timeout=self._nav_timeout(timeout_ms))
        except PlaywrightError as e:
            raise CrawlerError("Reload failed", {"url": self._page.url, "error": str(e)})

    def current_url(self) -> str:
        return self._page.url

    def is_present(self, selector: str) -> bool:
        try:
            return self._page.query_selector(selector) is not None
        except PlaywrightError:
            return False

    def close(self) -> None:
        self._page.close()


class PlaywrightBrowser:
    """Opens isolated Playwright pages configured from BrowserConfig."""

    LAUNCH_ARGS = [
        '--disable-blink-features=AutomationControlled',
        '--disable-dev-shm-usage',
        '--no-sandbox',
        '--disable-setuid-sandbox',
    ]

    def __init__(self, config: Optional[BrowserConfig] = None):
        self.config = config or BrowserConfig()

    @contextmanager
    def open_page(self) -> Iterator[BrowserPage]:
        """
        Yield a fresh page in its own browser context.

        Raises:
            CrawlerError: If the browser cannot be launched
        """
        playwright = sync_playwright().start()
        browser = None
        try:
            try:
                browser = playwright.chromium.launch(headless=self.config.headless, args=self.LAUNCH_ARGS)
                context = browser.new_context(
                    user_agent=self.config.user_agent,
                    viewport={'width': self.config.viewport_width, 'height': self.config.viewport_height},
                )
                context.set_default_timeout(self.config.element_timeout_ms)
                page = context.new_page()
            except PlaywrightError as e:
                raise CrawlerError("Failed to initialize Playwright browser", {"error": str(e)})

            logger.debug("Playwright page opened")
            yield PlaywrightPage(page, self.config)
        finally:
            if browser is not None:
                try:
                    browser.close()
                except PlaywrightError as e:
                    logger.warning(f"Error closing browser: {e}")
            playwright.stop()
