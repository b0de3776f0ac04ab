"""
Repository for crawl session snapshots.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from tender_monitor.data.database import DatabaseManager
from tender_monitor.data.sqlite_database import SQLiteDatabaseManager
from tender_monitor.sessions.models import CrawlSession
from tender_monitor.utils.dates import to_iso
from tender_monitor.utils.errors import DatabaseError


logger = logging.getLogger(__name__)


SESSION_COLUMNS = (
    "id",
    "provider",
    "name",
    "status",
    "started_at",
    "last_activity_at",
    "completed_at",
    "organizations_found",
    "organizations_scraped",
    "tenders_found",
    "tenders_scraped",
    "tenders_saved",
    "pages_navigated",
    "progress_percent",
    "error_message",
    "metadata",
    "updated_at",
)


class SessionRepository:
    """Persists crawl session snapshots, upserting by session id."""

    def __init__(self, db_manager: Union[DatabaseManager, SQLiteDatabaseManager]):
        """
        Initialize repository with database manager.

        Args:
            db_manager: Database manager instance (PostgreSQL or SQLite)
        """
        self.db_manager = db_manager
        self.is_sqlite = isinstance(db_manager, SQLiteDatabaseManager)

    def _get_placeholder(self) -> str:
        """Get the appropriate parameter placeholder for the database type."""
        return "?" if self.is_sqlite else "%s"

    def _timestamp(self, value: Optional[datetime]):
        return to_iso(value) if self.is_sqlite else value

    def _session_params(self, session: CrawlSession) -> tuple:
        payload = session.to_dict()
        return (
            session.id,
            session.provider.value,
            session.name,
            session.status.value,
            self._timestamp(session.started_at),
            self._timestamp(session.last_activity_at),
            self._timestamp(session.completed_at),
            session.organizations_found,
            session.organizations_scraped,
            session.tenders_found,
            session.tenders_scraped,
            session.tenders_saved,
            session.pages_navigated,
            float(session.progress_percent),
            session.error_message,
            json.dumps(payload),
            self._timestamp(datetime.now()),
        )

    def _upsert_query(self) -> str:
        placeholder = self._get_placeholder()
        columns = ", ".join(SESSION_COLUMNS)
        values = ", ".join([placeholder] * len(SESSION_COLUMNS))
        updates = ", ".join(f"{column} = excluded.{column}" for column in SESSION_COLUMNS if column != "id")
        return f"""
        INSERT INTO crawl_sessions ({columns})
        VALUES ({values})
        ON CONFLICT (id) DO UPDATE SET {updates}
        """

    def upsert_sessions(self, sessions: Iterable[CrawlSession]) -> int:
        """
        Upsert session snapshots in a single transaction.

        Args:
            sessions: Snapshots to persist

        Returns:
            Number of sessions written
        """
        sessions = list(sessions)
        if not sessions:
            return 0

        query = self._upsert_query()
        try:
            with self.db_manager.transaction() as conn:
                cursor = conn.cursor()
                try:
                    for session in sessions:
                        cursor.execute(query, self._session_params(session))
                finally:
                    cursor.close()
        except DatabaseError as e:
            logger.error(f"Failed to upsert {len(sessions)} sessions: {e}")
            raise DatabaseError(
                "Failed to upsert crawl sessions",
                {"session_ids": [s.id for s in sessions], "error": str(e.details.get("error", e))}
            )

        logger.debug(f"Upserted {len(sessions)} crawl sessions")
        return len(sessions)

    def upsert_session(self, session: CrawlSession) -> None:
        self.upsert_sessions([session])

    def _row_to_session(self, row) -> CrawlSession:
        data: Dict[str, Any] = dict(row)
        metadata = data.get("metadata") or {}
        # SQLite stores the snapshot as text
        if isinstance(metadata, str):
            metadata = json.loads(metadata)
        return CrawlSession.from_dict(metadata)

    def get_session(self, session_id: str) -> Optional[CrawlSession]:
        """Load the last persisted snapshot of a session."""
        placeholder = self._get_placeholder()
        query = f"SELECT metadata FROM crawl_sessions WHERE id = {placeholder}"
        rows = self.db_manager.execute_query(query, (session_id,))
        if not rows:
            return None
        return self._row_to_session(rows[0])

    def list_sessions(self, limit: Optional[int] = None, provider: Optional[str] = None) -> List[CrawlSession]:
        """
        List persisted sessions, newest first.

        Args:
            limit: Maximum number of sessions to return
            provider: Optional provider filter

        Returns:
            List of sessions
        """
        placeholder = self._get_placeholder()
        query = "SELECT metadata FROM crawl_sessions"
        params: List[Any] = []

        if provider:
            query += f" WHERE provider = {placeholder}"
            params.append(provider)

        query += " ORDER BY started_at DESC"

        if limit:
            query += f" LIMIT {placeholder}"
            params.append(limit)

        rows = self.db_manager.execute_query(query, tuple(params))
        return [self._row_to_session(row) for row in rows or []]

    def delete_session(self, session_id: str) -> bool:
        placeholder = self._get_placeholder()
        with self.db_manager.get_cursor() as cursor:
            cursor.execute(f"DELETE FROM crawl_sessions WHERE id = {placeholder}", (session_id,))
            return cursor.rowcount > 0
