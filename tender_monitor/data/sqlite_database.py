"""
SQLite database connection and management utilities.
"""

import sqlite3
from typing import Optional, Any, Dict, List
from contextlib import contextmanager
import logging
from pathlib import Path

from tender_monitor.utils.errors import DatabaseError


logger = logging.getLogger(__name__)


CREATE_CRAWL_SESSIONS_TABLE = """
CREATE TABLE IF NOT EXISTS crawl_sessions (
    id TEXT PRIMARY KEY,
    provider TEXT NOT NULL,
    name TEXT,
    status TEXT NOT NULL,
    started_at TIMESTAMP NOT NULL,
    last_activity_at TIMESTAMP NOT NULL,
    completed_at TIMESTAMP,
    organizations_found INTEGER DEFAULT 0,
    organizations_scraped INTEGER DEFAULT 0,
    tenders_found INTEGER DEFAULT 0,
    tenders_scraped INTEGER DEFAULT 0,
    tenders_saved INTEGER DEFAULT 0,
    pages_navigated INTEGER DEFAULT 0,
    progress_percent REAL DEFAULT 0,
    error_message TEXT,
    metadata TEXT,  -- JSON snapshot
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

CREATE_TENDERS_TABLE = """
CREATE TABLE IF NOT EXISTS tenders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tender_id TEXT NOT NULL,
    tender_ref_no TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1 CHECK (version >= 1),
    is_latest INTEGER NOT NULL DEFAULT 1,
    tender_value REAL,
    tender_type TEXT,
    work_description TEXT,
    contract_date TEXT,
    completion_info TEXT,
    pre_bid_meeting_date TIMESTAMP,
    pre_bid_meeting_address TEXT,
    pre_bid_meeting_place TEXT,
    period_of_work TEXT,
    organisation_chain TEXT,
    organisation TEXT,
    tender_inviting_authority_name TEXT,
    tender_inviting_authority_address TEXT,
    emd_amount REAL,
    emd_fee_type TEXT,
    emd_exception_allowed INTEGER DEFAULT 0,
    emd_percentage REAL,
    emd_payable_to TEXT,
    emd_payable_at TEXT,
    principal TEXT,
    location TEXT,
    pincode TEXT,
    published_date TIMESTAMP,
    bid_opening_date TIMESTAMP,
    bid_submission_start_date TIMESTAMP,
    bid_submission_end_date TIMESTAMP,
    is_surety_bond_allowed INTEGER DEFAULT 0,
    source_of_tender TEXT,
    compressed_tender_documents_uri TEXT,
    selected_bidders TEXT,  -- JSON list
    number_of_bids_received INTEGER,
    number_of_bidder_selected INTEGER,
    selected_bidders_address TEXT,
    selected_bidders_csv TEXT,
    provider TEXT,
    source_url TEXT,
    session_id TEXT,
    data_hash TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    scraped_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(tender_id, tender_ref_no, version)
);
"""

SQLITE_INDEXES = [
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_tenders_latest ON tenders(tender_id, tender_ref_no) WHERE is_latest = 1;",
    "CREATE INDEX IF NOT EXISTS idx_tenders_ref ON tenders(tender_ref_no);",
    "CREATE INDEX IF NOT EXISTS idx_tenders_provider ON tenders(provider, is_latest);",
    "CREATE INDEX IF NOT EXISTS idx_tenders_session ON tenders(session_id);",
    "CREATE INDEX IF NOT EXISTS idx_tenders_published ON tenders(published_date);",
    "CREATE INDEX IF NOT EXISTS idx_crawl_sessions_status ON crawl_sessions(status);",
    "CREATE INDEX IF NOT EXISTS idx_crawl_sessions_provider ON crawl_sessions(provider);",
    "CREATE INDEX IF NOT EXISTS idx_crawl_sessions_started ON crawl_sessions(started_at);",
]


class SQLiteDatabaseManager:
    """Manages SQLite database connections and operations."""

    is_sqlite = True

    def __init__(self, database_path: str = "data/tender_monitor.db"):
        """
        Initialize SQLite database manager.

        Args:
            database_path: Path to SQLite database file
        """
        self.database_path = Path(database_path)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

    def initialize(self) -> None:
        """Initialize the database and create tables."""
        try:
            self.create_tables()
            logger.info(f"SQLite database initialized at {self.database_path}")
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(
                "Failed to initialize SQLite database",
                {"error": str(e)}
            )

    @contextmanager
    def get_connection(self):
        """
        Get a database connection.

        Yields:
            SQLite database connection
        """
        conn = None
        try:
            conn = sqlite3.connect(
                str(self.database_path),
                timeout=30.0,
                check_same_thread=False
            )
            conn.row_factory = sqlite3.Row
            yield conn
        except DatabaseError:
            if conn:
                conn.rollback()
            raise
        except sqlite3.Error as e:
            if conn:
                conn.rollback()
            raise DatabaseError(
                "SQLite database operation failed",
                {"error": str(e)}
            )
        finally:
            if conn:
                conn.close()

    @contextmanager
    def get_cursor(self):
        """
        Get a database cursor with automatic connection management.

        Yields:
            SQLite database cursor
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def execute_query(
        self,
        query: str,
        params: Optional[tuple] = None,
        fetch: bool = True
    ) -> Optional[List[sqlite3.Row]]:
        """
        Execute a SQL query.

        Args:
            query: SQL query string
            params: Query parameters
            fetch: Whether to fetch results

        Returns:
            Query results if fetch=True, None otherwise
        """
        with self.get_cursor() as cursor:
            cursor.execute(query, params or ())
            if fetch:
                return cursor.fetchall()
            return None

    def create_tables(self) -> None:
        """Create database tables if they don't exist."""
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(CREATE_CRAWL_SESSIONS_TABLE)
                cursor.execute(CREATE_TENDERS_TABLE)
                for index_sql in SQLITE_INDEXES:
                    cursor.execute(index_sql)
                conn.commit()

            logger.info("SQLite database tables created successfully")
        except DatabaseError as e:
            raise DatabaseError(
                "Failed to create SQLite database tables",
                {"error": str(e)}
            )

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions.

        Usage:
            with db_manager.transaction() as conn:
                # Database operations here
                # Committed on success, rolled back on exception
        """
        with self.get_connection() as conn:
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def get_connection_stats(self) -> Dict[str, Any]:
        """
        Get database statistics.

        Returns:
            Dictionary with database stats
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                cursor.execute("SELECT COUNT(*) FROM crawl_sessions")
                sessions_count = cursor.fetchone()[0]

                cursor.execute("SELECT COUNT(*) FROM tenders")
                tender_rows = cursor.fetchone()[0]

                cursor.execute("SELECT COUNT(*) FROM tenders WHERE is_latest = 1")
                latest_count = cursor.fetchone()[0]

                cursor.execute("PRAGMA page_count")
                page_count = cursor.fetchone()[0]
                cursor.execute("PRAGMA page_size")
                page_size = cursor.fetchone()[0]

                return {
                    "status": "active",
                    "database_path": str(self.database_path),
                    "database_size_bytes": page_count * page_size,
                    "sessions_count": sessions_count,
                    "tender_rows_count": tender_rows,
                    "latest_tenders_count": latest_count
                }
        except DatabaseError as e:
            return {"status": "error", "error": str(e.details.get("error", e))}

    def health_check(self) -> bool:
        """
        Perform a health check on the database connection.

        Returns:
            True if database is healthy, False otherwise
        """
        try:
            result = self.execute_query("SELECT 1")
            return result is not None and len(result) > 0
        except DatabaseError as e:
            logger.error(f"SQLite database health check failed: {e}")
            return False

    def close(self) -> None:
        """Close database connections (no-op for SQLite as connections are per-operation)."""
        logger.info("SQLite database manager closed (connections are per-operation)")
