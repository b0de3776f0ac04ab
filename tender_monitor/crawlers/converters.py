"""
Map raw portal details onto TenderRecord.

Detail pages are scraped as ``{label: value}`` mappings; labels are matched
case-insensitively on their alphanumeric characters, exact match first and
then by prefix (so "Tender Value" finds "Tender Value in ₹").
"""

import hashlib
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from tender_monitor.data.models import TenderRecord, compute_data_hash
from tender_monitor.sessions.models import ScrapingProvider
from tender_monitor.utils.dates import parse_portal_date


# Detail page section headers on the list-navigation portals
BASIC_DETAILS = "Basic Details"
TENDER_FEE_DETAILS = "Tender Fee Details"
EMD_FEE_DETAILS = "EMD Fee Details"
WORK_ITEM_DETAILS = "Work Item Details"
CRITICAL_DATES = "Critical Dates"
TENDER_INVITING_AUTHORITY = "Tender Inviting Authority"

DETAIL_SECTIONS = (
    BASIC_DETAILS,
    TENDER_FEE_DETAILS,
    EMD_FEE_DETAILS,
    WORK_ITEM_DETAILS,
    CRITICAL_DATES,
    TENDER_INVITING_AUTHORITY,
)

CPPP_SOURCE_OF_TENDER = "CPP AOC"


def normalize_label(label: Optional[str]) -> str:
    return re.sub(r"[^a-z0-9]", "", (label or "").lower())


def lookup(mapping: Optional[Dict[str, Any]], *labels: str) -> Optional[Any]:
    """
    Value of the first label found in ``mapping``.

    Every candidate is tried as an exact match before any prefix match.
    Empty values count as missing.
    """
    if not mapping:
        return None

    normalized = [(normalize_label(key), value) for key, value in mapping.items()]
    wanted = [normalize_label(label) for label in labels]

    for target in wanted:
        for key, value in normalized:
            if key == target and _present(value):
                return value
    for target in wanted:
        for key, value in normalized:
            if target and key.startswith(target) and _present(value):
                return value
    return None


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


def parse_amount(value: Any) -> Optional[float]:
    """Parse money/count text, keeping only digits and the decimal point."""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    digits = re.sub(r"[^0-9.]", "", str(value))
    if not digits:
        return None
    try:
        return float(digits)
    except ValueError:
        # e.g. "1.2.3" from concatenated cells
        return None


def parse_count(value: Any) -> Optional[int]:
    amount = parse_amount(value)
    return int(amount) if amount is not None else None


def split_bidders(value: Union[None, str, Iterable[str]]) -> List[str]:
    """Split a bidder cell into unique names, order kept."""
    if value is None:
        return []
    parts = re.split(r"[,;]", value) if isinstance(value, str) else list(value)

    names = []
    for part in parts:
        name = clean_text(str(part).replace("&amp;", "&"))
        if name and name not in names:
            names.append(name)
    return names


def organisation_from_chain(chain: Optional[str]) -> Optional[str]:
    """Last segment of an ``A||B||C`` organisation chain."""
    if not chain:
        return None
    return clean_text(chain.split("||")[-1])


@dataclass
class TenderListing:
    """One row of a list-navigation results table plus its detail sections."""
    title: str
    link: str
    serial_number: Optional[str] = None
    published: Optional[str] = None
    closing: Optional[str] = None
    opening: Optional[str] = None
    reference_number: Optional[str] = None
    organisation_chain: Optional[str] = None
    details: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def section(self, name: str) -> Dict[str, str]:
        return self.details.get(name) or {}

    def find(self, *labels: str, sections: Iterable[str] = (), anywhere: bool = True) -> Optional[str]:
        """Look in ``sections`` first, then (unless disabled) anywhere on the page."""
        for name in sections:
            value = lookup(self.section(name), *labels)
            if value is not None:
                return clean_text(value)
        if not anywhere:
            return None
        merged: Dict[str, str] = {}
        for name in DETAIL_SECTIONS:
            for key, value in self.section(name).items():
                merged.setdefault(key, value)
        return clean_text(lookup(merged, *labels))


def convert_listing(
    listing: TenderListing,
    provider: Union[str, ScrapingProvider] = ScrapingProvider.EPROCURE,
    session_id: Optional[str] = None
) -> TenderRecord:
    """
    Build a record from a list-navigation portal tender.

    An unparseable published date stays empty; the crawl time lives in
    ``scraped_at``.

    Raises:
        ValidationError: If no tender id or reference number can be found
    """
    provider = ScrapingProvider.parse(provider)
    basic = (BASIC_DETAILS,)
    authority = (TENDER_INVITING_AUTHORITY,)

    tender_id = listing.find("Tender ID", sections=basic) or clean_text(listing.reference_number)
    tender_ref_no = (
        listing.find("Tender Reference Number", "Tender Ref No", sections=basic)
        or clean_text(listing.reference_number)
    )

    emd_exemption = listing.find("EMD Exemption Allowed", "EMD Exception Allowed", sections=(EMD_FEE_DETAILS,))

    record = TenderRecord(
        tender_id=tender_id,
        tender_ref_no=tender_ref_no,
        tender_value=parse_amount(listing.find("Tender Value", sections=(WORK_ITEM_DETAILS,))) or None,
        tender_type=listing.find("Tender Type", sections=basic),
        work_description=listing.find("Work Description", sections=(WORK_ITEM_DETAILS,)) or clean_text(listing.title),
        pre_bid_meeting_date=parse_portal_date(
            listing.find("Pre Bid Meeting Date", sections=(CRITICAL_DATES, WORK_ITEM_DETAILS))
        ),
        pre_bid_meeting_address=listing.find("Pre Bid Meeting Address", sections=(WORK_ITEM_DETAILS,)),
        pre_bid_meeting_place=listing.find("Pre Bid Meeting Place", sections=(WORK_ITEM_DETAILS,)),
        period_of_work=listing.find("Period Of Work", "Contract Period", sections=(WORK_ITEM_DETAILS,)),
        organisation_chain=clean_text(listing.organisation_chain),
        organisation=organisation_from_chain(listing.organisation_chain),
        tender_inviting_authority_name=listing.find("Name", sections=authority, anywhere=False),
        tender_inviting_authority_address=listing.find("Address", sections=authority, anywhere=False),
        emd_amount=parse_amount(listing.find("EMD Amount", sections=(EMD_FEE_DETAILS,))) or None,
        emd_fee_type=listing.find("EMD Fee Type", sections=(EMD_FEE_DETAILS,)),
        emd_exception_allowed=(emd_exemption or "").strip().lower() == "yes",
        emd_percentage=parse_amount(listing.find("EMD Percentage", sections=(EMD_FEE_DETAILS,))) or None,
        emd_payable_to=listing.find("EMD Payable To", sections=(EMD_FEE_DETAILS,)),
        emd_payable_at=listing.find("EMD Payable At", sections=(EMD_FEE_DETAILS,)),
        principal=listing.find("Principal", sections=basic),
        location=listing.find("Location", sections=(WORK_ITEM_DETAILS,)),
        pincode=listing.find("Pincode", sections=(WORK_ITEM_DETAILS,)),
        published_date=parse_portal_date(listing.published),
        bid_opening_date=parse_portal_date(listing.opening),
        bid_submission_start_date=parse_portal_date(
            listing.find("Bid Submission Start Date", sections=(CRITICAL_DATES,))
        ),
        bid_submission_end_date=parse_portal_date(listing.closing),
        is_surety_bond_allowed=False,
        source_of_tender=listing.find("Source of Tender", sections=basic),
        provider=provider.value,
        source_url=listing.link,
        session_id=session_id,
    )
    record.data_hash = compute_data_hash(record)
    return record


def convert_cppp_details(
    details: Dict[str, Any],
    title_from_list: str,
    current_url: Optional[str],
    session_id: Optional[str] = None,
    document_link: Optional[str] = None
) -> TenderRecord:
    """
    Build a record from a CPPP award-of-contract detail page.

    The reference number falls back to the listing title; the tender id
    falls back to an md5 of title and published date.
    """
    title = clean_text(title_from_list) or ""
    published_raw = clean_text(lookup(details, "Published Date"))

    tender_ref_no = clean_text(lookup(details, "Tender Ref. No.", "Tender Ref No", "Tender Reference Number")) or title
    tender_id = tender_ref_no or hashlib.md5(f"{title}-{published_raw or ''}".encode("utf-8")).hexdigest()

    bidders = split_bidders(lookup(
        details,
        "Name of the selected bidder(s)",
        "Name of selected bidder(s)",
        "Selected bidder(s)",
        "Selected bidders",
    ))
    organisation = clean_text(lookup(details, "Organisation Name", "Organization Name"))
    description = clean_text(lookup(details, "Tender Description", "Description"))
    contract_date = clean_text(lookup(details, "Contract Date"))

    record = TenderRecord(
        tender_id=tender_id,
        tender_ref_no=tender_ref_no,
        tender_value=parse_amount(lookup(details, "Contract Value")),
        tender_type=clean_text(lookup(details, "Tender Type", "Type")),
        work_description=description or title,
        contract_date=contract_date,
        completion_info=clean_text(lookup(details, "Date of Completion/Completion Period in Days")),
        organisation_chain=organisation,
        organisation=organisation,
        published_date=parse_portal_date(published_raw),
        bid_opening_date=parse_portal_date(contract_date),
        emd_exception_allowed=False,
        is_surety_bond_allowed=False,
        source_of_tender=CPPP_SOURCE_OF_TENDER,
        compressed_tender_documents_uri=document_link or None,
        selected_bidders=bidders,
        number_of_bids_received=parse_count(lookup(details, "Number of bids received")),
        number_of_bidder_selected=len(bidders),
        selected_bidders_address=clean_text(lookup(details, "Address of the selected bidder(s)")),
        selected_bidders_csv=", ".join(bidders) if bidders else None,
        provider=ScrapingProvider.EPROCURE_CPPP.value,
        source_url=current_url,
        session_id=session_id,
    )
    record.data_hash = compute_data_hash(record)
    return record
