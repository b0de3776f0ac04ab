"""
Tender record model and field-level comparison table.
"""

import hashlib
import json
import re
from dataclasses import dataclass, field, fields, asdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from tender_monitor.utils.dates import parse_portal_date, to_iso
from tender_monitor.utils.errors import ValidationError


ABSENT_MARKERS = frozenset({"", "na", "n/a"})
_NUMERIC_RE = re.compile(r"^[+-]?(\d{1,3}(,\d{2,3})+|\d+)(\.\d+)?$")


@dataclass
class TenderRecord:
    """Scraped tender, versioned by natural key (tender_id, tender_ref_no)."""
    tender_id: str
    tender_ref_no: str

    # Business fields
    tender_value: Optional[float] = None
    tender_type: Optional[str] = None
    work_description: Optional[str] = None
    contract_date: Optional[str] = None
    completion_info: Optional[str] = None
    pre_bid_meeting_date: Optional[datetime] = None
    pre_bid_meeting_address: Optional[str] = None
    pre_bid_meeting_place: Optional[str] = None
    period_of_work: Optional[str] = None
    organisation_chain: Optional[str] = None
    organisation: Optional[str] = None
    tender_inviting_authority_name: Optional[str] = None
    tender_inviting_authority_address: Optional[str] = None
    emd_amount: Optional[float] = None
    emd_fee_type: Optional[str] = None
    emd_exception_allowed: bool = False
    emd_percentage: Optional[float] = None
    emd_payable_to: Optional[str] = None
    emd_payable_at: Optional[str] = None
    principal: Optional[str] = None
    location: Optional[str] = None
    pincode: Optional[str] = None
    published_date: Optional[datetime] = None
    bid_opening_date: Optional[datetime] = None
    bid_submission_start_date: Optional[datetime] = None
    bid_submission_end_date: Optional[datetime] = None
    is_surety_bond_allowed: bool = False
    source_of_tender: Optional[str] = None
    compressed_tender_documents_uri: Optional[str] = None
    selected_bidders: List[str] = field(default_factory=list)
    number_of_bids_received: Optional[int] = None
    number_of_bidder_selected: Optional[int] = None
    selected_bidders_address: Optional[str] = None
    selected_bidders_csv: Optional[str] = None
    provider: Optional[str] = None
    source_url: Optional[str] = None

    # Metadata, never compared
    id: Optional[int] = None
    session_id: Optional[str] = None
    data_hash: Optional[str] = None
    version: int = 1
    is_latest: bool = True
    created_at: Optional[datetime] = None
    scraped_at: datetime = field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate data after initialization."""
        self.validate()

    def validate(self) -> None:
        """
        Validate the natural key and counters.

        Raises:
            ValidationError: If data is invalid
        """
        errors = []

        if not self.tender_id or not str(self.tender_id).strip():
            errors.append("Tender ID is required")
        if not self.tender_ref_no or not str(self.tender_ref_no).strip():
            errors.append("Tender reference number is required")
        if self.version < 1:
            errors.append("Version must start at 1")
        if self.number_of_bids_received is not None and self.number_of_bids_received < 0:
            errors.append("Number of bids received cannot be negative")

        if errors:
            raise ValidationError(
                "Tender validation failed",
                {"errors": errors, "tender_id": self.tender_id}
            )

    @property
    def natural_key(self) -> Tuple[str, str]:
        return (self.tender_id, self.tender_ref_no)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = to_iso(value)
        return data


METADATA_FIELDS = frozenset({
    "id", "session_id", "data_hash", "version", "is_latest",
    "created_at", "scraped_at", "updated_at",
})


# Normalizers

def normalize_text(value: Any) -> Any:
    """Trim strings, map empty/NA markers to None, coerce numeric-looking text."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()

    text = " ".join(str(value).split())
    if text.lower() in ABSENT_MARKERS:
        return None
    if _NUMERIC_RE.match(text):
        return float(text.replace(",", ""))
    return text


def normalize_number(value: Any) -> Optional[float]:
    """Numbers and numeric-looking strings compare by value."""
    if value is None or isinstance(value, bool):
        return None if value is None else float(value)
    if isinstance(value, (int, float)):
        return float(value)

    normalized = normalize_text(value)
    if isinstance(normalized, float):
        return normalized
    return normalized


def normalize_date(value: Any) -> Optional[str]:
    """Dates compare by their ISO rendering."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()

    text = normalize_text(value)
    if text is None:
        return None
    parsed = parse_portal_date(str(value).strip())
    return parsed.isoformat() if parsed else str(text)


def normalize_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in ABSENT_MARKERS:
        return None
    return text in ("yes", "true", "1", "y")


def normalize_list(value: Any) -> Optional[Tuple[str, ...]]:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.split(",")
    items = tuple(" ".join(str(item).split()) for item in value)
    items = tuple(item for item in items if item and item.lower() not in ABSENT_MARKERS)
    return items or None


def values_equal(left: Any, right: Any) -> bool:
    """Normalized values match by equality or by their string forms."""
    if left == right:
        return True
    if left is None or right is None:
        return False
    return str(left) == str(right)


def _field(name: str) -> Callable[[TenderRecord], Any]:
    return lambda record: getattr(record, name)


ComparedField = Tuple[str, Callable[[TenderRecord], Any], Callable[[Any], Any]]

# Business fields compared when deciding whether a sighting is a new version.
TENDER_COMPARISON_FIELDS: Tuple[ComparedField, ...] = (
    ("tender_id", _field("tender_id"), normalize_text),
    ("tender_ref_no", _field("tender_ref_no"), normalize_text),
    ("tender_value", _field("tender_value"), normalize_number),
    ("tender_type", _field("tender_type"), normalize_text),
    ("work_description", _field("work_description"), normalize_text),
    ("contract_date", _field("contract_date"), normalize_date),
    ("completion_info", _field("completion_info"), normalize_text),
    ("pre_bid_meeting_date", _field("pre_bid_meeting_date"), normalize_date),
    ("pre_bid_meeting_address", _field("pre_bid_meeting_address"), normalize_text),
    ("pre_bid_meeting_place", _field("pre_bid_meeting_place"), normalize_text),
    ("period_of_work", _field("period_of_work"), normalize_text),
    ("organisation_chain", _field("organisation_chain"), normalize_text),
    ("organisation", _field("organisation"), normalize_text),
    ("tender_inviting_authority_name", _field("tender_inviting_authority_name"), normalize_text),
    ("tender_inviting_authority_address", _field("tender_inviting_authority_address"), normalize_text),
    ("emd_amount", _field("emd_amount"), normalize_number),
    ("emd_fee_type", _field("emd_fee_type"), normalize_text),
    ("emd_exception_allowed", _field("emd_exception_allowed"), normalize_bool),
    ("emd_percentage", _field("emd_percentage"), normalize_number),
    ("emd_payable_to", _field("emd_payable_to"), normalize_text),
    ("emd_payable_at", _field("emd_payable_at"), normalize_text),
    ("principal", _field("principal"), normalize_text),
    ("location", _field("location"), normalize_text),
    ("pincode", _field("pincode"), normalize_text),
    ("published_date", _field("published_date"), normalize_date),
    ("bid_opening_date", _field("bid_opening_date"), normalize_date),
    ("bid_submission_start_date", _field("bid_submission_start_date"), normalize_date),
    ("bid_submission_end_date", _field("bid_submission_end_date"), normalize_date),
    ("is_surety_bond_allowed", _field("is_surety_bond_allowed"), normalize_bool),
    ("source_of_tender", _field("source_of_tender"), normalize_text),
    ("compressed_tender_documents_uri", _field("compressed_tender_documents_uri"), normalize_text),
    ("selected_bidders", _field("selected_bidders"), normalize_list),
    ("number_of_bids_received", _field("number_of_bids_received"), normalize_number),
    ("number_of_bidder_selected", _field("number_of_bidder_selected"), normalize_number),
    ("selected_bidders_address", _field("selected_bidders_address"), normalize_text),
    ("selected_bidders_csv", _field("selected_bidders_csv"), normalize_text),
    ("provider", _field("provider"), normalize_text),
    ("source_url", _field("source_url"), normalize_text),
)

BUSINESS_FIELDS = tuple(name for name, _, _ in TENDER_COMPARISON_FIELDS)


def changed_fields(existing: TenderRecord, incoming: TenderRecord) -> List[str]:
    """Return the business fields whose normalized values differ."""
    changed = []
    for name, accessor, normalizer in TENDER_COMPARISON_FIELDS:
        if not values_equal(normalizer(accessor(existing)), normalizer(accessor(incoming))):
            changed.append(name)
    return changed


def compute_data_hash(record: TenderRecord) -> str:
    """Content fingerprint for debugging and external dedup; not a change signal."""
    payload = json.dumps(
        {
            "tender_id": record.tender_id,
            "tender_ref_no": record.tender_ref_no,
            "tender_value": record.tender_value,
            "work_description": record.work_description,
            "organisation": record.organisation,
            "published_date": to_iso(record.published_date),
        },
        sort_keys=True,
        default=str,
    )
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def record_field_names() -> List[str]:
    return [f.name for f in fields(TenderRecord)]
