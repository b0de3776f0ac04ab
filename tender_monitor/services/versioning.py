"""
记录版本服务 - 判断新抓取的招标记录是新增、未变化还是新版本
"""

import threading
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from tender_monitor.data.models import TenderRecord, changed_fields, compute_data_hash
from tender_monitor.data.repository import TenderRepository
from tender_monitor.utils.logging import get_business_logger


logger = get_business_logger('versioning')

COMPARISON_FAILED = "<comparison failed>"

# Saves of the same natural key serialize on one of a fixed set of locks
KEY_LOCK_STRIPES = 64


@dataclass
class SaveResult:
    """保存结果"""
    record: TenderRecord
    is_new: bool = False
    is_updated: bool = False
    changed_fields: List[str] = field(default_factory=list)

    @property
    def written(self) -> bool:
        return self.is_new or self.is_updated


class TenderVersioningService:
    """
    Saves tenders with field-level change detection.

    A sighting of a known natural key writes only when at least one business
    field differs after normalization; the stored data hash is never
    consulted.
    """

    def __init__(self, repository: TenderRepository):
        self.repository = repository
        self._key_locks = [threading.Lock() for _ in range(KEY_LOCK_STRIPES)]

    def _lock_for(self, key: Tuple[str, str]) -> threading.Lock:
        return self._key_locks[hash(key) % KEY_LOCK_STRIPES]

    def save(self, record: TenderRecord) -> SaveResult:
        """
        Create, skip or version a tender.

        Args:
            record: Freshly scraped tender

        Returns:
            SaveResult with the stored (or unchanged existing) record

        Raises:
            DatabaseError: If the write fails
        """
        record.data_hash = record.data_hash or compute_data_hash(record)

        with self._lock_for(record.natural_key):
            existing = self.repository.find_latest(record.tender_id, record.tender_ref_no)

            if existing is None:
                stored = self.repository.insert(record)
                logger.info(f"New tender saved: {record.tender_id} ({record.tender_ref_no})")
                return SaveResult(record=stored, is_new=True)

            try:
                changes = changed_fields(existing, record)
            except (TypeError, ValueError, AttributeError) as e:
                # Unknown difference is treated as a change
                logger.warning(f"Field comparison failed for {record.tender_id}, saving new version: {e}")
                changes = [COMPARISON_FAILED]

            if not changes:
                logger.debug(
                    f"Tender unchanged, skipping save: {record.tender_id} (version {existing.version})"
                )
                return SaveResult(record=existing)

            stored = self.repository.supersede_and_insert(existing, record)
            logger.info(
                f"Tender updated: {record.tender_id} ({record.tender_ref_no}) "
                f"v{existing.version} -> v{stored.version}, changed: {', '.join(changes)}"
            )
            return SaveResult(record=stored, is_updated=True, changed_fields=changes)

    def get_tender(self, tender_id: str) -> Optional[TenderRecord]:
        return self.repository.find_latest_by_tender_id(tender_id)

    def get_tender_by_ref(self, tender_id: str, tender_ref_no: str) -> Optional[TenderRecord]:
        return self.repository.find_latest(tender_id, tender_ref_no)

    def list_latest(
        self,
        provider: Optional[str] = None,
        session_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> Tuple[List[TenderRecord], int]:
        """
        Latest versions matching the filter, with the unpaginated total.

        Returns:
            (records, total_count)
        """
        records = self.repository.list_latest(provider=provider, session_id=session_id,
                                              limit=limit, offset=offset)
        total = self.repository.count_latest(provider=provider, session_id=session_id)
        return records, total

    def get_history(self, tender_id: str, tender_ref_no: str) -> List[TenderRecord]:
        return self.repository.get_history(tender_id, tender_ref_no)

    def count(self, provider: Optional[str] = None, session_id: Optional[str] = None) -> int:
        return self.repository.count_latest(provider=provider, session_id=session_id)

    def delete(self, tender_id: str, tender_ref_no: str, hard: bool = False) -> bool:
        with self._lock_for((tender_id, tender_ref_no)):
            return self.repository.delete(tender_id, tender_ref_no, hard=hard) > 0
