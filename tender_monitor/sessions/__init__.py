"""
Crawl session tracking.

Main Components:
- SessionRegistry: live session state, ETA and write-back persistence
- SessionEventStream: periodic snapshots for push-style readers
- eta: remaining-time estimation
"""

from .models import (
    CrawlSession,
    SessionStatus,
    ScrapingProvider,
    TERMINAL_STATUSES,
    generate_session_id
)
from .eta import EtaEstimate, EtaTier, estimate, format_duration
from .registry import SessionRegistry
from .events import SessionEventStream, to_sse

__all__ = [
    'CrawlSession',
    'SessionStatus',
    'ScrapingProvider',
    'TERMINAL_STATUSES',
    'generate_session_id',

    'EtaEstimate',
    'EtaTier',
    'estimate',
    'format_duration',

    'SessionRegistry',
    'SessionEventStream',
    'to_sse'
]
