"""
Booking Store

SQLAlchemy implementation of the persistence contract the reconciliation
engine and manual edits rely on. The store never commits; callers own the
transaction boundary.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import and_, tuple_
from sqlalchemy.orm import Session

from ..models.booking import Booking, BookingStatus, ManualType
from ..utils.dates import DateWindow

logger = logging.getLogger(__name__)

BookingKey = Tuple[str, str]

# Keep IN (...) lists under SQLite's bound-parameter limit
KEY_CHUNK_SIZE = 400


@dataclass
class UpsertOp:
    """Insert-or-update keyed by the external identity (uid, source)"""
    uid: str
    source: str
    fields: Dict = field(default_factory=dict)

    @property
    def key(self) -> BookingKey:
        return (self.uid, self.source)


@dataclass
class UpdateOp:
    """Partial update keyed by booking id"""
    booking_id: str
    fields: Dict = field(default_factory=dict)


@dataclass
class BulkWriteResult:
    matched: int = 0
    modified: int = 0
    upserted: int = 0

    @property
    def changed(self) -> int:
        return self.modified + self.upserted


def _apply(booking: Booking, fields: Dict) -> bool:
    """Set fields on a booking; True when any value actually changed"""
    changed = False
    for name, value in fields.items():
        if getattr(booking, name) != value:
            setattr(booking, name, value)
            changed = True
    return changed


def _chunks(items: List, size: int = KEY_CHUNK_SIZE):
    for i in range(0, len(items), size):
        yield items[i:i + size]


class BookingStore:
    """
    Booking persistence over one SQLAlchemy session.

    Usage:
        store = BookingStore(db)
        result = store.bulk_upsert(ops)
        db.commit()
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, booking_id: str) -> Optional[Booking]:
        return self.db.query(Booking).filter(Booking.id == booking_id).first()

    def find_active(
        self,
        property_names: Optional[Iterable[str]] = None,
        window: Optional[DateWindow] = None
    ) -> List[Booking]:
        """Active bookings, optionally narrowed to properties and an overlap window"""
        query = self.db.query(Booking).filter(Booking.status == BookingStatus.ACTIVE.value)
        if property_names is not None:
            query = query.filter(Booking.property_name.in_(list(property_names)))
        if window is not None:
            query = query.filter(and_(Booking.start <= window.end, Booking.end >= window.start))
        return query.order_by(Booking.end, Booking.start).all()

    def find_by_keys(self, keys: Iterable[BookingKey]) -> Dict[BookingKey, Booking]:
        """Non-manual bookings by (uid, source)"""
        keys = list(dict.fromkeys(keys))
        found: Dict[BookingKey, Booking] = {}
        for chunk in _chunks(keys):
            rows = self.db.query(Booking).filter(
                Booking.is_manual == False,  # noqa: E712
                tuple_(Booking.uid, Booking.source).in_(chunk)
            ).all()
            for row in rows:
                found[(row.uid, row.source)] = row
        return found

    def find_in_window(self, sources: Iterable[str], window: DateWindow) -> List[Booking]:
        """Non-manual bookings (any status) from the given feeds overlapping the window"""
        sources = list(sources)
        if not sources:
            return []
        return self.db.query(Booking).filter(
            Booking.is_manual == False,  # noqa: E712
            Booking.source.in_(sources),
            Booking.start <= window.end,
            Booking.end >= window.start,
        ).all()

    def find_active_manual(self, manual_types: Optional[Iterable[str]] = None) -> List[Booking]:
        query = self.db.query(Booking).filter(
            Booking.is_manual == True,  # noqa: E712
            Booking.status == BookingStatus.ACTIVE.value,
        )
        if manual_types is not None:
            query = query.filter(Booking.manual_type.in_(list(manual_types)))
        return query.all()

    def hidden_booking_ids(self) -> Set[str]:
        """
        Ids of originals currently superseded by an active merge or split.

        Computed on every call from the active manual rows; nothing is stored.
        """
        hidden: Set[str] = set()
        manuals = self.find_active_manual([ManualType.MERGED.value, ManualType.SPLIT.value])
        for manual in manuals:
            if manual.manual_type == ManualType.MERGED.value:
                hidden.update(manual.merged_from_ids or [])
            elif manual.split_from_id:
                hidden.add(manual.split_from_id)
        return hidden

    def find_overlapping(
        self,
        property_name: str,
        start,
        end,
        manual_type: Optional[str] = None,
        exclude_id: Optional[str] = None
    ) -> List[Booking]:
        """
        Active bookings overlapping [start, end) (half-open).

        manual_type="block" selects blocks, None selects upstream bookings.
        """
        query = self.db.query(Booking).filter(
            Booking.property_name == property_name,
            Booking.status == BookingStatus.ACTIVE.value,
            Booking.start < end,
            Booking.end > start,
        )
        if manual_type is None:
            query = query.filter(Booking.is_manual == False)  # noqa: E712
        else:
            query = query.filter(Booking.is_manual == True, Booking.manual_type == manual_type)  # noqa: E712
        if exclude_id:
            query = query.filter(Booking.id != exclude_id)
        return query.order_by(Booking.start).all()

    # ------------------------------------------------------------------
    # Writes (flushed, never committed)
    # ------------------------------------------------------------------

    def bulk_upsert(self, ops: List[UpsertOp]) -> BulkWriteResult:
        result = BulkWriteResult()
        if not ops:
            return result

        existing = self.find_by_keys(op.key for op in ops)
        for op in ops:
            booking = existing.get(op.key)
            if booking is None:
                booking = Booking(uid=op.uid, source=op.source, **op.fields)
                self.db.add(booking)
                existing[op.key] = booking
                result.upserted += 1
                continue
            result.matched += 1
            if _apply(booking, op.fields):
                result.modified += 1

        self.db.flush()
        return result

    def bulk_update(self, ops: List[UpdateOp]) -> BulkWriteResult:
        result = BulkWriteResult()
        if not ops:
            return result

        ids = [op.booking_id for op in ops]
        rows: Dict[str, Booking] = {}
        for chunk in _chunks(ids):
            for row in self.db.query(Booking).filter(Booking.id.in_(chunk)).all():
                rows[row.id] = row

        for op in ops:
            booking = rows.get(op.booking_id)
            if booking is None:
                continue
            result.matched += 1
            if _apply(booking, op.fields):
                result.modified += 1

        self.db.flush()
        return result

    def create(self, booking: Booking) -> Booking:
        self.db.add(booking)
        self.db.flush()
        return booking

    def delete_by_id(self, booking_id: str) -> bool:
        deleted = self.db.query(Booking).filter(Booking.id == booking_id).delete()
        self.db.flush()
        return deleted > 0

    def delete_many(self, **filters) -> int:
        """Hard delete rows matching column equality filters, e.g. split_from_id=..."""
        if not filters:
            raise ValueError("delete_many requires at least one filter")
        conditions = [getattr(Booking, name) == value for name, value in filters.items()]
        deleted = self.db.query(Booking).filter(*conditions).delete()
        self.db.flush()
        return deleted
