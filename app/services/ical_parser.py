"""
iCal Feed Parser

Turns the raw text of an external calendar feed into canonical Reservation
records. Pure function: no I/O, no module state, safe to call concurrently
for many feeds.

Normalization rules:
- All-day values (DATE) are anchored to UTC midnight
- Aware datetimes are converted to UTC, floating ones are read as UTC
- Missing DTEND means DTSTART + DURATION, or DTSTART + 1 hour
- An unreadable DTEND or DURATION counts as missing; an unreadable DTSTART
  skips the event
- Vendor placeholder summaries collapse onto three canonical labels
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from icalendar import Calendar

from ..utils.dates import to_utc_naive

logger = logging.getLogger(__name__)

# Canonical labels for vendor placeholder summaries
LABEL_AIRBNB_UNAVAILABLE = "Not available (Airbnb)"
LABEL_UNAVAILABLE = "Not available"
LABEL_RESERVED = "Reserved"

DEFAULT_EVENT_LENGTH = timedelta(hours=1)


class FeedParseError(Exception):
    """The feed is not an iCalendar document at all"""


@dataclass
class Reservation:
    """One external reservation as read from a feed (never persisted as-is)"""
    uid: str
    source: str
    start: datetime
    end: datetime
    summary: str = ""
    description: Optional[str] = None
    location: Optional[str] = None
    property_name: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.uid, self.source)


def normalize_summary(summary: str) -> str:
    """
    Map vendor placeholder summaries onto the canonical labels.

    The Airbnb placeholder also contains "Not available", so it is checked
    first; anything unrecognized passes through verbatim.
    """
    if "Airbnb (Not available)" in summary:
        return LABEL_AIRBNB_UNAVAILABLE
    if "Not available" in summary:
        # Covers "CLOSED - Not available" as well
        return LABEL_UNAVAILABLE
    if "Reserved" in summary:
        return LABEL_RESERVED
    return summary


def _text(component, name: str) -> Optional[str]:
    value = component.get(name)
    if value is None:
        return None
    # icalendar has already unescaped \n and \, ; keep values on one line
    return " ".join(str(value).splitlines()).strip()


def _dt(component, name: str):
    """Decoded value of a date/time property, None when absent or unreadable"""
    prop = component.get(name)
    if prop is None:
        return None
    try:
        return prop.dt
    except AttributeError:
        # Older icalendar keeps an unparseable value as plain text
        return None
    except ValueError as e:
        # Newer icalendar raises BrokenCalendarProperty (a ValueError)
        logger.debug(f"Unreadable {name}: {e}")
        return None


def _temporal(component, name: str):
    value = _dt(component, name)
    if isinstance(value, (date, datetime)):
        return value
    return None


def _event_bounds(component) -> Optional[Tuple[datetime, datetime]]:
    raw_start = _temporal(component, "DTSTART")
    if raw_start is None:
        return None
    start = to_utc_naive(raw_start)

    raw_end = _temporal(component, "DTEND")
    if raw_end is not None:
        end = to_utc_naive(raw_end)
    else:
        duration = _dt(component, "DURATION")
        if isinstance(duration, timedelta):
            end = start + duration
        else:
            end = start + DEFAULT_EVENT_LENGTH

    return start, end


def parse(raw_text: str, source_id: str, property_label: Optional[str] = None) -> List[Reservation]:
    """
    Parse one feed into reservations.

    Args:
        raw_text: Feed body as text
        source_id: Identity of the feed (its URL); becomes Reservation.source
        property_label: Property name to stamp on every reservation

    Raises:
        FeedParseError: the text is not a VCALENDAR document

    Individual broken events are logged and skipped.
    """
    if not raw_text or "BEGIN:VCALENDAR" not in raw_text.upper():
        raise FeedParseError(f"Feed {source_id} is not an iCalendar document")

    try:
        calendar = Calendar.from_ical(raw_text)
    except ValueError as e:
        raise FeedParseError(f"Feed {source_id} could not be parsed: {e}")

    reservations = []
    for component in calendar.walk("VEVENT"):
        if component.errors:
            logger.debug(f"Feed {source_id}: event property errors {component.errors}")

        bounds = _event_bounds(component)
        if bounds is None:
            logger.warning(f"Feed {source_id}: skipping event without a valid DTSTART")
            continue
        start, end = bounds

        uid = _text(component, "UID") or f"generated-{uuid.uuid4()}"

        if end <= start:
            logger.warning(f"Feed {source_id}: skipping event {uid}, end {end} is not after start {start}")
            continue

        reservations.append(Reservation(
            uid=uid,
            source=source_id,
            start=start,
            end=end,
            summary=normalize_summary(_text(component, "SUMMARY") or ""),
            description=_text(component, "DESCRIPTION"),
            location=_text(component, "LOCATION"),
            property_name=property_label,
        ))

    return reservations
