"""
Business services for the tender crawl monitor.

``CrawlService`` lives in ``tender_monitor.services.crawl_service``; it
depends on the crawlers, which in turn depend on the versioning service.
"""

from .versioning import TenderVersioningService, SaveResult, COMPARISON_FAILED

__all__ = [
    'TenderVersioningService',
    'SaveResult',
    'COMPARISON_FAILED'
]
