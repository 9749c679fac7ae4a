"""
Booking listing for the operator view.

Two modes:
- explicit range: bookings overlapping [from, to], large page
- rolling: bookings checking out between today and today + days_ahead
Hidden originals (superseded by a merge or split) are left out unless asked for.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..models.booking import Booking, BookingStatus
from ..models.feed_source import FeedSource
from ..utils.dates import calendar_day, day_end, day_start, today
from ..schemas.pagination import paginate_query
from .booking_store import BookingStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 30
LARGE_PAGE_SIZE = 1000


@dataclass
class BookingFilters:
    conditions: List = field(default_factory=list)
    limit: int = DEFAULT_PAGE_SIZE
    mode: str = "rolling"


def build_booking_filters(
    window_from: Optional[date] = None,
    window_to: Optional[date] = None,
    days_ahead: int = 35,
    include_cancelled: bool = False,
    all_rows: bool = False,
    first_day: Optional[date] = None
) -> BookingFilters:
    filters = BookingFilters()
    if not include_cancelled:
        filters.conditions.append(Booking.status == BookingStatus.ACTIVE.value)

    if window_from and window_to:
        filters.conditions.append(Booking.start <= day_end(window_to))
        filters.conditions.append(Booking.end >= day_start(window_from))
        filters.limit = LARGE_PAGE_SIZE
        filters.mode = "range"
    else:
        first_day = first_day or today()
        filters.conditions.append(Booking.end >= day_start(first_day))
        filters.conditions.append(Booking.end <= day_end(first_day + timedelta(days=days_ahead)))

    if all_rows:
        filters.limit = LARGE_PAGE_SIZE
    return filters


def property_group_map(db: Session) -> Dict[str, str]:
    """Most common group id per property name across its feeds"""
    counts: Dict[str, Dict[str, int]] = {}
    for source in db.query(FeedSource).filter(FeedSource.group_id.isnot(None)).all():
        per_group = counts.setdefault(source.property_name, {})
        per_group[source.group_id] = per_group.get(source.group_id, 0) + 1
    return {name: max(groups, key=groups.get) for name, groups in counts.items()}


def booking_to_row(booking: Booking, group_map: Optional[Dict[str, str]] = None) -> Dict:
    created_today = booking.created_at is not None and calendar_day(booking.created_at) == today()
    return {
        "id": booking.id,
        "uid": booking.uid,
        "source": booking.source,
        "property_name": booking.property_name,
        "start": booking.start.isoformat(),
        "end": booking.end.isoformat(),
        "summary": booking.summary,
        "description": booking.description or "",
        "location": booking.location or "",
        "guests": booking.guests,
        "notes": booking.notes or "",
        "status": booking.status,
        "is_urgent_changeover": bool(booking.is_urgent_changeover),
        "is_manual": bool(booking.is_manual),
        "manual_type": booking.manual_type,
        "merged_from_ids": booking.merged_from_ids,
        "split_from_id": booking.split_from_id,
        "has_conflict": bool(booking.has_conflict),
        "block_reason": booking.block_reason,
        "group_id": (group_map or {}).get(booking.property_name),
        "is_new": created_today,
        "created_at": booking.created_at.isoformat() if booking.created_at else None,
        "updated_at": booking.updated_at.isoformat() if booking.updated_at else None,
    }


def list_bookings(
    db: Session,
    filters: BookingFilters,
    page: int = 1,
    limit: Optional[int] = None,
    include_hidden: bool = False,
    property_names: Optional[List[str]] = None,
    sort_by: str = "end"
) -> Dict:
    """Visible bookings for one page plus paging info"""
    limit = limit or filters.limit
    page = max(page, 1)

    query = db.query(Booking).filter(*filters.conditions)
    if property_names:
        query = query.filter(Booking.property_name.in_(property_names))
    if not include_hidden:
        hidden = BookingStore(db).hidden_booking_ids()
        if hidden:
            query = query.filter(Booking.id.notin_(list(hidden)))

    if sort_by == "start":
        query = query.order_by(Booking.start, Booking.end)
    else:
        query = query.order_by(Booking.end, Booking.start)

    items, total = paginate_query(query, page, limit)
    group_map = property_group_map(db)

    return {
        "count": len(items),
        "total_count": total,
        "page": page,
        "limit": limit,
        "has_more": page * limit < total,
        "mode": filters.mode,
        "rows": [booking_to_row(b, group_map) for b in items],
    }
