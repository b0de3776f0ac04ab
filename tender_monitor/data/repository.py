"""
Data repository for versioned tender records.
"""

from typing import List, Optional, Dict, Any, Union
from datetime import datetime
from decimal import Decimal
import logging
import json

from tender_monitor.data.models import TenderRecord, BUSINESS_FIELDS
from tender_monitor.data.database import DatabaseManager
from tender_monitor.data.sqlite_database import SQLiteDatabaseManager
from tender_monitor.utils.dates import from_iso, to_iso
from tender_monitor.utils.errors import DatabaseError


logger = logging.getLogger(__name__)


TENDER_COLUMNS = BUSINESS_FIELDS + (
    "session_id",
    "data_hash",
    "version",
    "is_latest",
    "created_at",
    "scraped_at",
    "updated_at",
)

TIMESTAMP_COLUMNS = frozenset({
    "pre_bid_meeting_date",
    "published_date",
    "bid_opening_date",
    "bid_submission_start_date",
    "bid_submission_end_date",
    "created_at",
    "scraped_at",
    "updated_at",
})

BOOLEAN_COLUMNS = frozenset({"emd_exception_allowed", "is_surety_bond_allowed", "is_latest"})
FLOAT_COLUMNS = frozenset({"tender_value", "emd_amount", "emd_percentage"})


class TenderRepository:
    """
    Repository for tender rows.

    For a natural key (tender_id, tender_ref_no) at most one row carries
    is_latest; versions form the sequence 1..n.
    """

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

    def _true(self):
        return 1 if self.is_sqlite else True

    def _false(self):
        return 0 if self.is_sqlite else False

    def _to_db_value(self, column: str, value: Any) -> Any:
        if column == "selected_bidders":
            return json.dumps(list(value or []))
        if self.is_sqlite:
            if isinstance(value, datetime):
                return to_iso(value)
            if isinstance(value, bool):
                return int(value)
        return value

    def _record_params(self, record: TenderRecord) -> tuple:
        return tuple(self._to_db_value(column, getattr(record, column)) for column in TENDER_COLUMNS)

    def _row_to_record(self, row) -> TenderRecord:
        data: Dict[str, Any] = dict(row)
        values: Dict[str, Any] = {}

        for column, value in data.items():
            if column in TIMESTAMP_COLUMNS:
                value = from_iso(value)
            elif column in BOOLEAN_COLUMNS:
                value = bool(value) if value is not None else False
            elif column in FLOAT_COLUMNS and isinstance(value, Decimal):
                value = float(value)
            elif column == "selected_bidders":
                # Stored as JSON text on both backends
                value = json.loads(value) if value else []
            values[column] = value

        if values.get("scraped_at") is None:
            values.pop("scraped_at", None)
        return TenderRecord(**values)

    def _latest_filter(self, provider: Optional[str], session_id: Optional[str]):
        placeholder = self._get_placeholder()
        clauses = [f"is_latest = {placeholder}"]
        params: List[Any] = [self._true()]
        if provider:
            clauses.append(f"provider = {placeholder}")
            params.append(provider)
        if session_id:
            clauses.append(f"session_id = {placeholder}")
            params.append(session_id)
        return " AND ".join(clauses), params

    def _insert_sql(self) -> str:
        placeholder = self._get_placeholder()
        columns = ", ".join(TENDER_COLUMNS)
        values = ", ".join([placeholder] * len(TENDER_COLUMNS))
        sql = f"INSERT INTO tenders ({columns}) VALUES ({values})"
        if not self.is_sqlite:
            sql += " RETURNING id"
        return sql

    def _insert_with_cursor(self, cursor, record: TenderRecord) -> int:
        cursor.execute(self._insert_sql(), self._record_params(record))
        if self.is_sqlite:
            return cursor.lastrowid
        return cursor.fetchone()[0]

    def _next_version(self, cursor, tender_id: str, tender_ref_no: str) -> int:
        placeholder = self._get_placeholder()
        cursor.execute(
            f"""
            SELECT COALESCE(MAX(version), 0) FROM tenders
            WHERE tender_id = {placeholder} AND tender_ref_no = {placeholder}
            """,
            (tender_id, tender_ref_no)
        )
        return int(cursor.fetchone()[0]) + 1

    def find_latest(self, tender_id: str, tender_ref_no: str) -> Optional[TenderRecord]:
        """
        Find the latest version for a natural key.

        Returns:
            Latest TenderRecord or None
        """
        placeholder = self._get_placeholder()
        query = f"""
        SELECT * FROM tenders
        WHERE tender_id = {placeholder} AND tender_ref_no = {placeholder} AND is_latest = {placeholder}
        ORDER BY version DESC
        LIMIT 1
        """
        rows = self.db_manager.execute_query(query, (tender_id, tender_ref_no, self._true()))
        return self._row_to_record(rows[0]) if rows else None

    def find_latest_by_tender_id(self, tender_id: str) -> Optional[TenderRecord]:
        placeholder = self._get_placeholder()
        query = f"""
        SELECT * FROM tenders
        WHERE tender_id = {placeholder} AND is_latest = {placeholder}
        ORDER BY version DESC
        LIMIT 1
        """
        rows = self.db_manager.execute_query(query, (tender_id, self._true()))
        return self._row_to_record(rows[0]) if rows else None

    def insert(self, record: TenderRecord) -> TenderRecord:
        """
        Insert the first live version of a natural key.

        The version continues after any soft-deleted rows for the key, so
        a key seen for the first time starts at 1.

        Returns:
            The stored record with id and version set
        """
        now = datetime.now()
        with self.db_manager.transaction() as conn:
            cursor = conn.cursor()
            try:
                record.version = self._next_version(cursor, record.tender_id, record.tender_ref_no)
                record.is_latest = True
                record.created_at = record.created_at or now
                record.updated_at = now
                record.id = self._insert_with_cursor(cursor, record)
            finally:
                cursor.close()

        logger.debug(f"Inserted tender {record.tender_id} ({record.tender_ref_no}) version {record.version}")
        return record

    def supersede_and_insert(self, existing: TenderRecord, record: TenderRecord) -> TenderRecord:
        """
        Flip the existing latest row and insert the next version, atomically.

        Args:
            existing: Row currently flagged latest
            record: New content for the natural key

        Returns:
            The stored record with id and version set

        Raises:
            DatabaseError: If the existing row stopped being latest meanwhile
        """
        placeholder = self._get_placeholder()
        now = datetime.now()

        with self.db_manager.transaction() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(
                    f"""
                    UPDATE tenders SET is_latest = {placeholder}, updated_at = {placeholder}
                    WHERE id = {placeholder} AND is_latest = {placeholder}
                    """,
                    (self._false(), self._to_db_value("updated_at", now), existing.id, self._true())
                )
                if cursor.rowcount != 1:
                    raise DatabaseError(
                        "Latest tender version changed concurrently",
                        {"tender_id": existing.tender_id, "tender_ref_no": existing.tender_ref_no,
                         "expected_version": existing.version}
                    )

                record.version = existing.version + 1
                record.is_latest = True
                record.created_at = now
                record.updated_at = now
                record.id = self._insert_with_cursor(cursor, record)
            finally:
                cursor.close()

        logger.debug(
            f"Superseded tender {record.tender_id} ({record.tender_ref_no}) "
            f"version {existing.version} -> {record.version}"
        )
        return record

    def list_latest(
        self,
        provider: Optional[str] = None,
        session_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> List[TenderRecord]:
        """
        List latest versions, newest first.

        Args:
            provider: Optional provider filter
            session_id: Optional session filter
            limit: Page size, all rows when None
            offset: Rows to skip

        Returns:
            List of tender records
        """
        placeholder = self._get_placeholder()
        where, params = self._latest_filter(provider, session_id)
        query = f"SELECT * FROM tenders WHERE {where} ORDER BY created_at DESC, id DESC"

        if limit is not None:
            query += f" LIMIT {placeholder}"
            params.append(limit)
            if offset:
                query += f" OFFSET {placeholder}"
                params.append(offset)
        elif offset:
            # SQLite requires a LIMIT before OFFSET
            if self.is_sqlite:
                query += " LIMIT -1"
            query += f" OFFSET {placeholder}"
            params.append(offset)

        rows = self.db_manager.execute_query(query, tuple(params))
        return [self._row_to_record(row) for row in rows or []]

    def count_latest(self, provider: Optional[str] = None, session_id: Optional[str] = None) -> int:
        where, params = self._latest_filter(provider, session_id)
        rows = self.db_manager.execute_query(f"SELECT COUNT(*) AS total FROM tenders WHERE {where}", tuple(params))
        return int(dict(rows[0])["total"]) if rows else 0

    def get_history(self, tender_id: str, tender_ref_no: str) -> List[TenderRecord]:
        """All versions of a natural key, newest first."""
        placeholder = self._get_placeholder()
        query = f"""
        SELECT * FROM tenders
        WHERE tender_id = {placeholder} AND tender_ref_no = {placeholder}
        ORDER BY version DESC
        """
        rows = self.db_manager.execute_query(query, (tender_id, tender_ref_no))
        return [self._row_to_record(row) for row in rows or []]

    def delete(self, tender_id: str, tender_ref_no: str, hard: bool = False) -> int:
        """
        Delete a tender.

        Soft delete clears the latest flag and keeps history; hard delete
        removes every version.

        Returns:
            Number of rows affected
        """
        placeholder = self._get_placeholder()
        with self.db_manager.get_cursor() as cursor:
            if hard:
                cursor.execute(
                    f"DELETE FROM tenders WHERE tender_id = {placeholder} AND tender_ref_no = {placeholder}",
                    (tender_id, tender_ref_no)
                )
            else:
                cursor.execute(
                    f"""
                    UPDATE tenders SET is_latest = {placeholder}
                    WHERE tender_id = {placeholder} AND tender_ref_no = {placeholder} AND is_latest = {placeholder}
                    """,
                    (self._false(), tender_id, tender_ref_no, self._true())
                )
            affected = cursor.rowcount

        logger.info(f"Tender {'hard' if hard else 'soft'} deleted: {tender_id} ({tender_ref_no}), rows={affected}")
        return affected
