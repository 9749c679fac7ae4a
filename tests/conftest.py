"""
Shared fixtures: an in-memory SQLite session and small row factories.
"""

import pytest
from datetime import datetime
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.database import Base
from app import models  # noqa: F401
from app.models.booking import Booking
from app.models.feed_source import FeedSource
from app.models.property import Property

APT1_FEED = "https://feeds.example.com/apt1.ics"
APT2_FEED = "https://feeds.example.com/apt2.ics"


@pytest.fixture
def db():
    """Fresh in-memory database per test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def make_booking(db):
    """Insert an upstream booking; days are given as (year, month, day) tuples or datetimes"""
    counter = {"n": 0}

    def _make(start, end, property_name="Apt 1", source=APT1_FEED, uid=None, **fields):
        counter["n"] += 1
        booking = Booking(
            uid=uid or f"uid-{counter['n']}@example.com",
            source=source,
            property_name=property_name,
            start=start if isinstance(start, datetime) else datetime(*start),
            end=end if isinstance(end, datetime) else datetime(*end),
            summary=fields.pop("summary", "Reserved"),
            **fields
        )
        db.add(booking)
        db.commit()
        return booking

    return _make


@pytest.fixture
def make_feed(db):
    def _make(url=APT1_FEED, property_name="Apt 1", **fields):
        source = FeedSource(property_name=property_name, ical_url=url, **fields)
        db.add(source)
        db.commit()
        return source

    return _make


@pytest.fixture
def make_property(db):
    def _make(name="Apt 1", display_name=None, **fields):
        prop = Property(name=name, display_name=display_name or name, **fields)
        db.add(prop)
        db.commit()
        return prop

    return _make


def ics(*events: str) -> str:
    """Wrap VEVENT bodies into a calendar document"""
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//Test Feed//EN"]
    for body in events:
        lines.append("BEGIN:VEVENT")
        lines.extend(line.strip() for line in body.strip().splitlines())
        lines.append("END:VEVENT")
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


def all_day_event(uid: str, start: str, end: str, summary: str = "Reserved") -> str:
    """VEVENT body with DATE values, e.g. all_day_event("a", "20300110", "20300115")"""
    return (
        f"UID:{uid}\n"
        f"DTSTART;VALUE=DATE:{start}\n"
        f"DTEND;VALUE=DATE:{end}\n"
        f"SUMMARY:{summary}"
    )
