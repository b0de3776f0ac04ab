"""
Tests for portal date handling and detail-page conversion.
"""

from datetime import datetime, date

import pytest
from hypothesis import given, strategies as st

from tender_monitor.crawlers.converters import (
    BASIC_DETAILS,
    EMD_FEE_DETAILS,
    WORK_ITEM_DETAILS,
    CRITICAL_DATES,
    TENDER_INVITING_AUTHORITY,
    CPPP_SOURCE_OF_TENDER,
    TenderListing,
    convert_listing,
    convert_cppp_details,
    lookup,
    parse_amount,
    split_bidders,
    organisation_from_chain,
)
from tender_monitor.utils.dates import DateRange, parse_portal_date, is_date_in_range
from tender_monitor.utils.errors import ValidationError


class TestPortalDates:

    @pytest.mark.parametrize("raw, expected", [
        ("09-Oct-2025 05:20 PM", datetime(2025, 10, 9, 17, 20)),
        ("09-Oct-2025", datetime(2025, 10, 9)),
        ("09/10/2025", datetime(2025, 10, 9)),
        ("  09-Oct-2025 05:20  PM ", datetime(2025, 10, 9, 17, 20)),
        ("2025-10-09T17:20:00Z", datetime(2025, 10, 9, 17, 20)),
        ("not a date", None),
        ("", None),
        (None, None),
    ])
    def test_parse_portal_date(self, raw, expected):
        assert parse_portal_date(raw) == expected

    def test_whole_day_range_includes_end_date_afternoon(self):
        date_range = DateRange.from_dates(date(2025, 1, 1), date(2025, 1, 31))
        assert is_date_in_range("31-Jan-2025 05:20 PM", date_range)
        assert not is_date_in_range("01-Feb-2025", date_range)
        assert not is_date_in_range("31-Dec-2024 11:59 PM", date_range)

    def test_unparseable_dates_are_kept(self):
        date_range = DateRange.from_dates(date(2025, 1, 1), date(2025, 1, 31))
        assert is_date_in_range("--", date_range)
        assert is_date_in_range(None, date_range)

    def test_reversed_bounds_are_normalized(self):
        date_range = DateRange.from_dates(date(2025, 3, 1), date(2025, 1, 1))
        assert is_date_in_range("15-Feb-2025", date_range)

    @given(st.dates(min_value=date(2000, 1, 1), max_value=date(2030, 12, 31)),
           st.dates(min_value=date(2000, 1, 1), max_value=date(2030, 12, 31)))
    def test_years_cover_the_range(self, first, second):
        years = DateRange.from_dates(first, second).years()
        low, high = sorted([first.year, second.year])
        assert years == list(range(low, high + 1))

    def test_open_range_accepts_everything(self):
        assert is_date_in_range("01-Jan-1990", None)
        assert is_date_in_range("01-Jan-1990", DateRange())


class TestLabelLookup:

    def test_exact_match_beats_prefix(self):
        mapping = {"Tender Value in ₹": "5,00,000", "Tender Value": "1,000"}
        assert lookup(mapping, "Tender Value") == "1,000"

    def test_prefix_match_and_case_insensitive(self):
        assert lookup({"TENDER VALUE IN ₹": "5,00,000"}, "tender value") == "5,00,000"

    def test_empty_values_are_skipped(self):
        assert lookup({"Tender ID": " ", "Tender ID No": "X1"}, "Tender ID") == "X1"
        assert lookup({}, "anything") is None

    @pytest.mark.parametrize("raw, expected", [
        ("₹ 5,00,000.50", 500000.5),
        ("NA", None),
        ("1.2.3", None),
        (12, 12.0),
        (None, None),
    ])
    def test_parse_amount(self, raw, expected):
        assert parse_amount(raw) == expected

    def test_split_bidders_dedupes_and_unescapes(self):
        assert split_bidders("A &amp; Co, B Ltd; A &amp; Co ,") == ["A & Co", "B Ltd"]
        assert split_bidders(None) == []

    def test_organisation_from_chain(self):
        assert organisation_from_chain("Ministry of Railways||Northern Railway||Works") == "Works"
        assert organisation_from_chain(None) is None


def sample_listing(**overrides) -> TenderListing:
    values = dict(
        title="Supply of sleepers",
        link="https://eprocure.gov.in/tender/1",
        published="09-Oct-2025 05:20 PM",
        closing="20-Oct-2025 03:00 PM",
        opening="21-Oct-2025 11:00 AM",
        reference_number="NR/2025/001",
        organisation_chain="Ministry of Railways||Northern Railway",
        details={
            BASIC_DETAILS: {
                "Tender ID": "2025_NR_1001_1",
                "Tender Reference Number": "NR/2025/001",
                "Tender Type": "Open Tender",
            },
            WORK_ITEM_DETAILS: {
                "Work Description": "Supply of concrete sleepers",
                "Tender Value in ₹": "12,50,000",
                "Location": "Delhi",
                "Pincode": "110001",
            },
            EMD_FEE_DETAILS: {
                "EMD Amount in ₹": "25,000",
                "EMD Exemption Allowed": "Yes",
            },
            CRITICAL_DATES: {"Bid Submission Start Date": "10-Oct-2025 10:00 AM"},
            TENDER_INVITING_AUTHORITY: {"Name": "Chief Engineer", "Address": "Baroda House"},
        },
    )
    values.update(overrides)
    return TenderListing(**values)


class TestConvertListing:

    def test_full_listing(self):
        record = convert_listing(sample_listing(), "EPROCURE", session_id="s1")

        assert record.tender_id == "2025_NR_1001_1"
        assert record.tender_ref_no == "NR/2025/001"
        assert record.tender_value == 1250000.0
        assert record.work_description == "Supply of concrete sleepers"
        assert record.emd_amount == 25000.0
        assert record.emd_exception_allowed is True
        assert record.organisation == "Northern Railway"
        assert record.tender_inviting_authority_name == "Chief Engineer"
        assert record.published_date == datetime(2025, 10, 9, 17, 20)
        assert record.bid_submission_end_date == datetime(2025, 10, 20, 15, 0)
        assert record.bid_submission_start_date == datetime(2025, 10, 10, 10, 0)
        assert record.provider == "EPROCURE"
        assert record.session_id == "s1"
        assert record.data_hash

    def test_missing_details_fall_back_to_listing_row(self):
        record = convert_listing(sample_listing(details={}, published="??"), "ETENDER")

        assert record.tender_id == "NR/2025/001"
        assert record.tender_ref_no == "NR/2025/001"
        assert record.work_description == "Supply of sleepers"
        assert record.tender_value is None
        assert record.published_date is None
        assert record.tender_inviting_authority_name is None

    def test_unparseable_published_date_is_stable_across_crawls(self):
        first = convert_listing(sample_listing(published="not a date"), "EPROCURE", session_id="s1")
        second = convert_listing(sample_listing(published="not a date"), "EPROCURE", session_id="s2")

        assert first.published_date is None and second.published_date is None
        assert first.data_hash == second.data_hash

    def test_no_identifiers_is_rejected(self):
        with pytest.raises(ValidationError):
            convert_listing(sample_listing(details={}, reference_number=None))


class TestConvertCpppDetails:

    def test_award_of_contract_page(self):
        details = {
            "Organisation Name": "Ministry of Defence",
            "Tender Ref. No.": "DEF/2025/77",
            "Tender Description": "Boots",
            "Published Date": "01-Feb-2025",
            "Contract Date": "15-Mar-2025",
            "Contract Value": "₹ 9,99,000",
            "Number of bids received": "4",
            "Name of the selected bidder(s)": "Alpha Ltd, Beta &amp; Sons",
        }

        record = convert_cppp_details(details, "Boots tender", "https://cppp/detail/1",
                                      session_id="s2", document_link="https://cppp/doc.zip")

        assert record.tender_id == "DEF/2025/77"
        assert record.tender_ref_no == "DEF/2025/77"
        assert record.tender_value == 999000.0
        assert record.selected_bidders == ["Alpha Ltd", "Beta & Sons"]
        assert record.number_of_bidder_selected == 2
        assert record.selected_bidders_csv == "Alpha Ltd, Beta & Sons"
        assert record.number_of_bids_received == 4
        assert record.bid_opening_date == datetime(2025, 3, 15)
        assert record.source_of_tender == CPPP_SOURCE_OF_TENDER
        assert record.provider == "EPROCURE_CPPP"
        assert record.compressed_tender_documents_uri == "https://cppp/doc.zip"

    def test_reference_falls_back_to_title(self):
        record = convert_cppp_details({}, "  Boots   tender ", None)

        assert record.tender_ref_no == "Boots tender"
        assert record.tender_id == "Boots tender"
        assert record.selected_bidders == []
        assert record.number_of_bidder_selected == 0
        assert record.selected_bidders_csv is None
