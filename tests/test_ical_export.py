"""
Tests for the public block calendar export
"""

import pytest
from datetime import datetime

from icalendar import Calendar

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.models.booking import BookingStatus
from app.services.ical_export import (
    build_block_calendar,
    content_disposition,
    export_filename,
    exportable_blocks,
    get_property_by_token,
    regenerate_export_token,
)
from app.services.ical_parser import LABEL_UNAVAILABLE
from app.services.manual_edits import ManualEditService


class TestExportableBlocks:

    def test_only_active_blocks_of_the_property(self, db, make_booking):
        service = ManualEditService(db)
        keep = service.create_block("Apt 1", datetime(2030, 1, 10), datetime(2030, 1, 12), "Owner stay")
        cancelled = service.create_block("Apt 1", datetime(2030, 2, 1), datetime(2030, 2, 3))
        cancelled.status = BookingStatus.CANCELLED.value
        db.commit()
        service.create_block("Apt 2", datetime(2030, 1, 10), datetime(2030, 1, 12))
        make_booking((2030, 3, 1), (2030, 3, 5))

        blocks = exportable_blocks(db, "Apt 1")

        assert [b.id for b in blocks] == [keep.id]


class TestBuildCalendar:

    def test_calendar_contents(self, db, make_property):
        prop = make_property("Apt 1", display_name="Sea View Apartment")
        block = ManualEditService(db).create_block(
            "Apt 1", datetime(2030, 1, 10, 14), datetime(2030, 1, 12, 10), "Owner stay"
        )

        body = build_block_calendar(prop, [block])
        calendar = Calendar.from_ical(body)
        events = calendar.walk("VEVENT")

        assert isinstance(body, bytes)
        assert str(calendar.get("x-wr-calname")) == "Sea View Apartment"
        assert len(events) == 1
        event = events[0]
        assert str(event.get("uid")) == block.uid
        assert str(event.get("summary")) == LABEL_UNAVAILABLE
        assert str(event.get("description")) == "Owner stay"
        assert event.decoded("dtstart").replace(tzinfo=None) == datetime(2030, 1, 10, 14)
        assert event.decoded("dtend").replace(tzinfo=None) == datetime(2030, 1, 12, 10)

    def test_empty_calendar_is_still_valid(self, db, make_property):
        prop = make_property("Apt 1")
        calendar = Calendar.from_ical(build_block_calendar(prop, []))
        assert calendar.walk("VEVENT") == []

    def test_filename_strips_quotes(self, db, make_property):
        prop = make_property('Apt "Blue"')
        assert export_filename(prop) == "Apt Blue.ics"

    def test_ascii_name_has_plain_disposition(self, db, make_property):
        prop = make_property("Apt 1")
        assert content_disposition(prop) == 'attachment; filename="Apt 1.ics"'

    def test_non_latin_name_sent_as_utf8_filename(self, db, make_property):
        prop = make_property("Apartament Słoneczny")
        header = content_disposition(prop)

        header.encode("latin-1")
        assert 'filename="Apartament Soneczny.ics"' in header
        assert "filename*=UTF-8''Apartament%20S%C5%82oneczny.ics" in header


class TestExportToken:

    def test_token_generated_on_create(self, db, make_property):
        prop = make_property("Apt 1")
        assert len(prop.export_token) >= 32
        assert get_property_by_token(db, prop.export_token).id == prop.id

    def test_regenerate_invalidates_old_token(self, db, make_property):
        prop = make_property("Apt 1")
        old_token = prop.export_token

        regenerate_export_token(db, prop.id)

        assert prop.export_token != old_token
        assert get_property_by_token(db, old_token) is None
        assert get_property_by_token(db, prop.export_token) is not None

    def test_regenerate_unknown_property(self, db):
        assert regenerate_export_token(db, "missing") is None

    def test_empty_token_never_matches(self, db, make_property):
        make_property("Apt 1")
        assert get_property_by_token(db, "") is None
