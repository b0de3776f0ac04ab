"""
Tender models, database managers and repositories.
"""

from .models import TenderRecord, TENDER_COMPARISON_FIELDS, compute_data_hash
from .repository import TenderRepository
from .session_repository import SessionRepository
from .database import DatabaseManager
from .sqlite_database import SQLiteDatabaseManager
from .database_factory import DatabaseFactory

__all__ = [
    'TenderRecord',
    'TENDER_COMPARISON_FIELDS',
    'compute_data_hash',
    'TenderRepository',
    'SessionRepository',
    'DatabaseManager',
    'SQLiteDatabaseManager',
    'DatabaseFactory'
]
