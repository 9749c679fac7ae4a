"""
Tests for the iCal feed parser

Tests cover:
- All-day, UTC and floating date normalization
- DTEND fallbacks (DURATION, default length)
- Skipping broken events without failing the feed
- Summary placeholder normalization
"""

import pytest
from datetime import datetime

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from conftest import ics, all_day_event

from app.services.ical_parser import (
    FeedParseError,
    LABEL_AIRBNB_UNAVAILABLE,
    LABEL_RESERVED,
    LABEL_UNAVAILABLE,
    normalize_summary,
    parse,
)

SOURCE = "https://feeds.example.com/apt1.ics"


class TestParseDates:
    """Date handling"""

    def test_all_day_event_anchored_to_utc_midnight(self):
        result = parse(ics(all_day_event("a@x", "20300110", "20300115")), SOURCE, "Apt 1")

        assert len(result) == 1
        r = result[0]
        assert r.start == datetime(2030, 1, 10)
        assert r.end == datetime(2030, 1, 15)
        assert r.uid == "a@x"
        assert r.source == SOURCE
        assert r.property_name == "Apt 1"

    def test_utc_datetime_kept_as_naive_utc(self):
        body = ics("""
            UID:b@x
            DTSTART:20300110T150000Z
            DTEND:20300112T100000Z
            SUMMARY:Guest
        """)
        r = parse(body, SOURCE)[0]
        assert r.start == datetime(2030, 1, 10, 15, 0)
        assert r.end == datetime(2030, 1, 12, 10, 0)
        assert r.start.tzinfo is None

    def test_floating_datetime_read_as_utc(self):
        body = ics("""
            UID:c@x
            DTSTART:20300110T150000
            DTEND:20300110T180000
        """)
        r = parse(body, SOURCE)[0]
        assert r.start == datetime(2030, 1, 10, 15, 0)
        assert r.end == datetime(2030, 1, 10, 18, 0)

    def test_duration_used_when_dtend_missing(self):
        body = ics("""
            UID:d@x
            DTSTART:20300110T150000Z
            DURATION:PT2H
        """)
        r = parse(body, SOURCE)[0]
        assert r.end == datetime(2030, 1, 10, 17, 0)

    def test_default_length_when_no_end_information(self):
        body = ics("""
            UID:e@x
            DTSTART:20300110T150000Z
        """)
        r = parse(body, SOURCE)[0]
        assert r.end == datetime(2030, 1, 10, 16, 0)


class TestParseRobustness:
    """Broken input handling"""

    def test_not_a_calendar_raises(self):
        with pytest.raises(FeedParseError):
            parse("<html>Service unavailable</html>", SOURCE)

    def test_empty_body_raises(self):
        with pytest.raises(FeedParseError):
            parse("", SOURCE)

    def test_event_without_dtstart_is_skipped(self):
        body = ics(
            "UID:no-start@x\nSUMMARY:Broken",
            all_day_event("ok@x", "20300110", "20300112"),
        )
        result = parse(body, SOURCE)
        assert [r.uid for r in result] == ["ok@x"]

    def test_unreadable_dtstart_skips_only_that_event(self):
        body = ics(
            "UID:bad@x\nDTSTART:notadate\nDTEND:20300112T100000Z",
            all_day_event("ok@x", "20300110", "20300112"),
        )
        result = parse(body, SOURCE)
        assert [r.uid for r in result] == ["ok@x"]

    def test_unreadable_dtend_treated_as_missing(self):
        body = ics("""
            UID:f@x
            DTSTART:20300110T150000Z
            DTEND:garbage
        """)
        result = parse(body, SOURCE)
        assert [(r.uid, r.end) for r in result] == [("f@x", datetime(2030, 1, 10, 16, 0))]

    def test_unreadable_dtend_falls_back_to_duration(self):
        body = ics("""
            UID:g@x
            DTSTART:20300110T150000Z
            DTEND:garbage
            DURATION:PT3H
        """)
        assert parse(body, SOURCE)[0].end == datetime(2030, 1, 10, 18, 0)

    def test_event_ending_before_start_is_skipped(self):
        body = ics(
            all_day_event("backwards@x", "20300115", "20300110"),
            all_day_event("ok@x", "20300110", "20300112"),
        )
        result = parse(body, SOURCE)
        assert [r.uid for r in result] == ["ok@x"]

    def test_missing_uid_gets_generated_one(self):
        body = ics("DTSTART;VALUE=DATE:20300110\nDTEND;VALUE=DATE:20300112")
        r = parse(body, SOURCE)[0]
        assert r.uid.startswith("generated-")

    def test_multiline_description_collapsed(self):
        body = ics(
            all_day_event("a@x", "20300110", "20300112")
            + "\nDESCRIPTION:Reservation URL: https://example.com/r/1\\nPhone: 1234"
            + "\nLOCATION:Main street 1"
        )
        r = parse(body, SOURCE)[0]
        assert r.description == "Reservation URL: https://example.com/r/1 Phone: 1234"
        assert r.location == "Main street 1"

    def test_parse_is_stateless_across_calls(self):
        """Parsing one feed must not leak events into the next"""
        first = parse(ics(all_day_event("a@x", "20300110", "20300112")), SOURCE)
        second = parse(ics(all_day_event("b@x", "20300110", "20300112")), "https://other.example/b.ics")
        assert [r.uid for r in first] == ["a@x"]
        assert [r.uid for r in second] == ["b@x"]
        assert second[0].source == "https://other.example/b.ics"


class TestNormalizeSummary:
    """Vendor placeholder labels"""

    def test_airbnb_placeholder_checked_first(self):
        assert normalize_summary("Airbnb (Not available)") == LABEL_AIRBNB_UNAVAILABLE

    def test_closed_not_available(self):
        assert normalize_summary("CLOSED - Not available") == LABEL_UNAVAILABLE

    def test_reserved(self):
        assert normalize_summary("Reserved") == LABEL_RESERVED

    def test_guest_name_passes_through(self):
        assert normalize_summary("John Smith") == "John Smith"

    def test_summary_normalized_during_parse(self):
        body = ics(all_day_event("a@x", "20300110", "20300112", summary="Airbnb (Not available)"))
        assert parse(body, SOURCE)[0].summary == LABEL_AIRBNB_UNAVAILABLE
