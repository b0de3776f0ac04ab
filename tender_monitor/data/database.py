"""
PostgreSQL connection and management utilities.
"""

import psycopg2
from psycopg2 import pool, extras
from typing import Optional, Any, Dict, List
from contextlib import contextmanager
import logging

from config import DatabaseConfig
from tender_monitor.utils.errors import DatabaseError


logger = logging.getLogger(__name__)


CREATE_CRAWL_SESSIONS_TABLE = """
CREATE TABLE IF NOT EXISTS crawl_sessions (
    id VARCHAR(64) PRIMARY KEY,
    provider VARCHAR(32) NOT NULL,
    name VARCHAR(255),
    status VARCHAR(16) NOT NULL,
    started_at TIMESTAMP NOT NULL,
    last_activity_at TIMESTAMP NOT NULL,
    completed_at TIMESTAMP,
    organizations_found INTEGER DEFAULT 0,
    organizations_scraped INTEGER DEFAULT 0,
    tenders_found INTEGER DEFAULT 0,
    tenders_scraped INTEGER DEFAULT 0,
    tenders_saved INTEGER DEFAULT 0,
    pages_navigated INTEGER DEFAULT 0,
    progress_percent DOUBLE PRECISION DEFAULT 0,
    error_message TEXT,
    metadata JSONB,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_crawl_sessions_status ON crawl_sessions(status);
CREATE INDEX IF NOT EXISTS idx_crawl_sessions_provider ON crawl_sessions(provider);
CREATE INDEX IF NOT EXISTS idx_crawl_sessions_started ON crawl_sessions(started_at);
"""

CREATE_TENDERS_TABLE = """
CREATE TABLE IF NOT EXISTS tenders (
    id SERIAL PRIMARY KEY,
    tender_id VARCHAR(255) NOT NULL,
    tender_ref_no VARCHAR(255) NOT NULL,
    version INTEGER NOT NULL DEFAULT 1 CHECK (version >= 1),
    is_latest BOOLEAN NOT NULL DEFAULT TRUE,
    tender_value DECIMAL(18, 2),
    tender_type VARCHAR(255),
    work_description TEXT,
    contract_date VARCHAR(64),
    completion_info TEXT,
    pre_bid_meeting_date TIMESTAMP,
    pre_bid_meeting_address TEXT,
    pre_bid_meeting_place TEXT,
    period_of_work TEXT,
    organisation_chain TEXT,
    organisation TEXT,
    tender_inviting_authority_name TEXT,
    tender_inviting_authority_address TEXT,
    emd_amount DECIMAL(18, 2),
    emd_fee_type VARCHAR(255),
    emd_exception_allowed BOOLEAN DEFAULT FALSE,
    emd_percentage DECIMAL(8, 4),
    emd_payable_to TEXT,
    emd_payable_at TEXT,
    principal TEXT,
    location TEXT,
    pincode VARCHAR(16),
    published_date TIMESTAMP,
    bid_opening_date TIMESTAMP,
    bid_submission_start_date TIMESTAMP,
    bid_submission_end_date TIMESTAMP,
    is_surety_bond_allowed BOOLEAN DEFAULT FALSE,
    source_of_tender VARCHAR(255),
    compressed_tender_documents_uri TEXT,
    selected_bidders TEXT,
    number_of_bids_received INTEGER,
    number_of_bidder_selected INTEGER,
    selected_bidders_address TEXT,
    selected_bidders_csv TEXT,
    provider VARCHAR(32),
    source_url TEXT,
    session_id VARCHAR(64),
    data_hash VARCHAR(64),
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    scraped_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(tender_id, tender_ref_no, version)
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_tenders_latest ON tenders(tender_id, tender_ref_no) WHERE is_latest;
CREATE INDEX IF NOT EXISTS idx_tenders_ref ON tenders(tender_ref_no);
CREATE INDEX IF NOT EXISTS idx_tenders_provider ON tenders(provider, is_latest);
CREATE INDEX IF NOT EXISTS idx_tenders_session ON tenders(session_id);
CREATE INDEX IF NOT EXISTS idx_tenders_published ON tenders(published_date);
"""


class DatabaseManager:
    """Manages PostgreSQL connections and operations."""

    is_sqlite = False

    def __init__(self, config: DatabaseConfig):
        """
        Initialize database manager with configuration.

        Args:
            config: Database configuration
        """
        self.config = config
        self._pool: Optional[pool.SimpleConnectionPool] = None

    def initialize(self) -> None:
        """Initialize the connection pool and create tables."""
        try:
            self._pool = pool.SimpleConnectionPool(
                minconn=1,
                maxconn=self.config.pool_size,
                host=self.config.host,
                port=self.config.port,
                database=self.config.database,
                user=self.config.username,
                password=self.config.password
            )
            logger.info("Database connection pool initialized")
        except psycopg2.Error as e:
            raise DatabaseError(
                "Failed to initialize database connection pool",
                {"error": str(e)}
            )
        self.create_tables()

    def close(self) -> None:
        """Close all connections in the pool."""
        if self._pool:
            self._pool.closeall()
            logger.info("Database connection pool closed")

    @contextmanager
    def get_connection(self):
        """
        Get a database connection from the pool.

        Yields:
            Database connection
        """
        if not self._pool:
            raise DatabaseError("Database pool not initialized")

        conn = None
        try:
            conn = self._pool.getconn()
            yield conn
        except DatabaseError:
            if conn:
                conn.rollback()
            raise
        except psycopg2.Error as e:
            if conn:
                conn.rollback()
            raise DatabaseError(
                "Database operation failed",
                {"error": str(e)}
            )
        finally:
            if conn:
                self._pool.putconn(conn)

    @contextmanager
    def get_cursor(self, cursor_factory=None):
        """
        Get a database cursor with automatic connection management.

        Args:
            cursor_factory: Optional cursor factory (defaults to RealDictCursor)

        Yields:
            Database cursor
        """
        with self.get_connection() as conn:
            cursor = conn.cursor(cursor_factory=cursor_factory or extras.RealDictCursor)
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
    ) -> Optional[List[Dict[str, Any]]]:
        """
        Execute a SQL query.

        Args:
            query: SQL query string
            params: Query parameters
            fetch: Whether to fetch results

        Returns:
            Query results as dict rows if fetch=True, None otherwise
        """
        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            if fetch:
                return cursor.fetchall()
            return None

    def create_tables(self) -> None:
        """Create database tables if they don't exist."""
        try:
            self.execute_query(CREATE_CRAWL_SESSIONS_TABLE, fetch=False)
            self.execute_query(CREATE_TENDERS_TABLE, fetch=False)
            logger.info("Database tables created successfully")
        except DatabaseError as e:
            raise DatabaseError(
                "Failed to create database tables",
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
        Get connection pool statistics.

        Returns:
            Dictionary with connection pool stats
        """
        if not self._pool:
            return {"status": "not_initialized"}

        return {
            "status": "active",
            "minconn": self._pool.minconn,
            "maxconn": self._pool.maxconn,
            "closed": self._pool.closed
        }

    def health_check(self) -> bool:
        """
        Perform a health check on the database connection.

        Returns:
            True if database is healthy, False otherwise
        """
        try:
            result = self.execute_query("SELECT 1 AS ok")
            return result is not None and len(result) > 0
        except DatabaseError as e:
            logger.error(f"Database health check failed: {e}")
            return False
