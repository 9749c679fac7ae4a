"""
iCal Export

Builds the public calendar the booking platforms subscribe to. Only our own
active blocks are exported: re-exporting bookings that came from Airbnb or
Booking.com would feed them back to their origin as duplicates.
"""

import logging
import unicodedata
from datetime import timezone
from typing import List, Optional
from urllib.parse import quote

from icalendar import Calendar, Event
from sqlalchemy.orm import Session

from ..config import settings
from ..models.booking import Booking, BookingStatus, ManualType
from ..models.property import Property, generate_export_token
from ..utils.dates import utcnow
from .booking_store import BookingStore
from .ical_parser import LABEL_UNAVAILABLE

logger = logging.getLogger(__name__)

CALENDAR_CONTENT_TYPE = "text/calendar; charset=utf-8"


def get_property_by_token(db: Session, token: str) -> Optional[Property]:
    if not token:
        return None
    return db.query(Property).filter(Property.export_token == token).first()


def exportable_blocks(db: Session, property_name: str) -> List[Booking]:
    """Active, unhidden blocks of one property"""
    store = BookingStore(db)
    hidden = store.hidden_booking_ids()
    blocks = db.query(Booking).filter(
        Booking.property_name == property_name,
        Booking.is_manual == True,  # noqa: E712
        Booking.manual_type == ManualType.BLOCK.value,
        Booking.status == BookingStatus.ACTIVE.value,
    ).order_by(Booking.start).all()
    return [b for b in blocks if b.id not in hidden]


def build_block_calendar(property_obj: Property, blocks: List[Booking]) -> bytes:
    """Serialize the blocks of one property as an iCalendar document"""
    calendar = Calendar()
    calendar.add("prodid", settings.export_calendar_prodid)
    calendar.add("version", "2.0")
    calendar.add("calscale", "GREGORIAN")
    calendar.add("x-wr-calname", property_obj.display_name or property_obj.name)

    stamp = utcnow().replace(tzinfo=timezone.utc)
    for block in blocks:
        event = Event()
        event.add("uid", block.uid)
        event.add("dtstamp", stamp)
        event.add("dtstart", block.start.replace(tzinfo=timezone.utc))
        event.add("dtend", block.end.replace(tzinfo=timezone.utc))
        event.add("summary", LABEL_UNAVAILABLE)
        event.add("description", block.block_reason or "")
        event.add("status", "CONFIRMED")
        event.add("transp", "OPAQUE")
        calendar.add_component(event)

    return calendar.to_ical()


def export_filename(property_obj: Property) -> str:
    safe_name = property_obj.name.replace('"', "").replace("\r", "").replace("\n", "")
    return f"{safe_name}.ics"


def content_disposition(property_obj: Property) -> str:
    """
    Attachment header for the export download.

    Header values go out as latin-1, so the plain filename is reduced to
    ASCII and the real name travels in filename* (RFC 6266 / RFC 5987).
    """
    filename = export_filename(property_obj)
    ascii_name = unicodedata.normalize("NFKD", filename).encode("ascii", "ignore").decode("ascii")
    header = f'attachment; filename="{ascii_name}"'
    if ascii_name != filename:
        header += f"; filename*=UTF-8''{quote(filename)}"
    return header


def regenerate_export_token(db: Session, property_id: str) -> Optional[Property]:
    """Replace the export token; the old URL stops working immediately"""
    property_obj = db.query(Property).filter(Property.id == property_id).first()
    if property_obj is None:
        return None

    property_obj.export_token = generate_export_token()
    db.commit()
    db.refresh(property_obj)
    logger.info(f"Export token regenerated for property {property_obj.name}")
    return property_obj
