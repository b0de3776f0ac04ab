"""
Crawler modules for the e-procurement portals.
"""

from dataclasses import replace
from typing import Optional

from config import SystemConfig
from tender_monitor.concurrent.worker_pool import WorkerPool
from tender_monitor.sessions.models import ScrapingProvider
from .base import (
    BaseTenderCrawler,
    CrawlRun,
    CrawlerRegistry,
    OrganizationInfo,
    dedupe_organizations,
    slugify,
)
from .browser import BrowserPage, PlaywrightBrowser, PlaywrightPage
from .converters import TenderListing, convert_cppp_details, convert_listing
from .eprocure_crawler import EProcureCrawler
from .cppp_crawler import CpppCrawler


default_registry = CrawlerRegistry()
default_registry.register(ScrapingProvider.EPROCURE, EProcureCrawler)
default_registry.register(ScrapingProvider.ETENDER, EProcureCrawler)
default_registry.register(ScrapingProvider.EPROCURE_CPPP, CpppCrawler)


def default_base_url(provider, config: SystemConfig) -> Optional[str]:
    provider = ScrapingProvider.parse(provider)
    return {
        ScrapingProvider.EPROCURE: config.providers.eprocure_url,
        ScrapingProvider.ETENDER: config.providers.etender_url,
        ScrapingProvider.EPROCURE_CPPP: config.providers.cppp_url,
    }.get(provider)


def create_crawler(
    provider,
    registry,
    versioning,
    config: Optional[SystemConfig] = None,
    browser=None,
    base_url: Optional[str] = None,
    crawler_registry: CrawlerRegistry = default_registry
) -> BaseTenderCrawler:
    """
    Build the crawler for a provider.

    Args:
        provider: ScrapingProvider or its name
        registry: SessionRegistry receiving progress
        versioning: TenderVersioningService storing records
        config: System configuration, defaults apply when omitted
        browser: Page factory override (tests use fakes)
        base_url: Listing URL override

    Raises:
        CrawlerError: If no crawler is registered for the provider
    """
    config = config or SystemConfig()
    provider = ScrapingProvider.parse(provider)
    crawler_class = crawler_registry.get_crawler_class(provider)
    url = base_url or default_base_url(provider, config)

    kwargs = {}
    if issubclass(crawler_class, EProcureCrawler):
        # One pool item crawls a whole organisation
        pool_config = replace(
            config.worker_pool,
            task_timeout=max(config.worker_pool.task_timeout, config.providers.organization_timeout)
        )
        kwargs["worker_pool"] = WorkerPool(pool_config)

    return crawler_class(
        registry,
        versioning,
        url,
        browser=browser,
        browser_config=config.browser,
        provider=provider,
        **kwargs
    )


__all__ = [
    'BaseTenderCrawler',
    'CrawlRun',
    'CrawlerRegistry',
    'OrganizationInfo',
    'dedupe_organizations',
    'slugify',
    'BrowserPage',
    'PlaywrightBrowser',
    'PlaywrightPage',
    'TenderListing',
    'convert_listing',
    'convert_cppp_details',
    'EProcureCrawler',
    'CpppCrawler',
    'default_registry',
    'default_base_url',
    'create_crawler',
]
