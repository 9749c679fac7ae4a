"""
Manual Edit Operations

Operator edits on top of the synced bookings:
- merge two adjacent stays into one manual booking
- split one stay into two manual halves
- undo either (hard delete of the manual rows)
- block dates (withheld from availability and exported to the platforms)
- guests / notes annotations

Originals are never deleted or cancelled by a merge or split; they are
hidden while an active manual booking references them. Preconditions on
originals are re-checked under a row lock inside the write transaction, so
the second of two racing edits on the same original is rejected.
"""

import logging
import uuid
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_
from sqlalchemy.orm import Session

from ..config import settings
from ..models.booking import Booking, BookingStatus, ManualType, MANUAL_SOURCE
from ..utils.dates import calendar_day, day_start, is_date_only, to_utc_naive
from ..utils.db_helpers import acquire_row_lock, acquire_row_locks
from ..utils.logging_config import get_logger
from .booking_store import BookingStore
from .ical_parser import LABEL_UNAVAILABLE

logger = logging.getLogger(__name__)
edit_log = get_logger(__name__)

CONFLICT_DECISIONS = ("keep", "remove")


class ManualEditValidationError(Exception):
    """The request itself is invalid (bad adjacency, bad dates, ...)"""


class BookingNotFoundError(Exception):
    """The referenced booking does not exist or has the wrong type"""


class ManualEditConflictError(Exception):
    """An original changed state (cancelled or already superseded) before the write"""


class BlockOverlapError(Exception):
    """A block collides with another block or with an upstream booking"""

    def __init__(self, conflict_type: str, conflicts: List[Dict]):
        self.conflict_type = conflict_type
        self.conflicts = conflicts
        if conflict_type == "block-overlap":
            message = "Block overlaps with an existing block"
        else:
            message = "Dates are taken by a booking from an external platform"
        super().__init__(message)


def _snapshot(booking: Booking) -> Dict:
    return {
        "uid": booking.uid,
        "source": booking.source,
        "start": booking.start.isoformat(),
        "end": booking.end.isoformat(),
    }


def _manual_uid(kind: str) -> str:
    return f"MANUAL-{kind}-{uuid.uuid4().hex}"


def _join(*values: Optional[str]) -> str:
    return " | ".join(v for v in values if v)


class ManualEditService:
    """
    Operator edits over one session. Every public method commits on success.

    Usage:
        merged = ManualEditService(db).merge(first_id, second_id)
    """

    def __init__(self, db: Session):
        self.db = db
        self.store = BookingStore(db)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_manual(self, booking_id: str, manual_type: Optional[str] = None) -> Booking:
        condition = and_(Booking.id == booking_id, Booking.is_manual == True)  # noqa: E712
        if manual_type:
            condition = and_(condition, Booking.manual_type == manual_type)
        booking = acquire_row_lock(self.db, Booking, condition)
        if booking is None:
            label = manual_type or "manual"
            raise BookingNotFoundError(f"{label.capitalize()} booking {booking_id} not found")
        return booking

    def _check_original_available(self, booking: Booking, hidden: set):
        if booking.status != BookingStatus.ACTIVE.value:
            raise ManualEditConflictError(f"Booking {booking.id} is cancelled")
        if booking.id in hidden:
            raise ManualEditConflictError(
                f"Booking {booking.id} is already part of another merge or split"
            )

    # ------------------------------------------------------------------
    # Merge / split
    # ------------------------------------------------------------------

    def merge(self, first_id: str, second_id: str) -> Booking:
        """Merge two adjacent bookings of one property into a manual booking"""
        if first_id == second_id:
            raise ManualEditValidationError("Provide two different booking ids")

        originals = acquire_row_locks(self.db, Booking, Booking.id.in_([first_id, second_id]))
        if len(originals) != 2:
            raise BookingNotFoundError("One or both bookings were not found")

        a, b = originals
        if a.is_block or b.is_block:
            raise ManualEditValidationError("Blocks cannot be merged")
        if a.property_name != b.property_name:
            raise ManualEditValidationError("Bookings must belong to the same property")

        hidden = self.store.hidden_booking_ids()
        for original in (a, b):
            self._check_original_available(original, hidden)

        first, second = (a, b) if (a.start, a.end) <= (b.start, b.end) else (b, a)
        if calendar_day(first.end) != calendar_day(second.start):
            raise ManualEditValidationError(
                f"Bookings are not adjacent: first ends {calendar_day(first.end)}, "
                f"second starts {calendar_day(second.start)}"
            )

        merged = Booking(
            uid=_manual_uid("merge"),
            source=MANUAL_SOURCE,
            property_name=first.property_name,
            start=first.start,
            end=second.end,
            summary=first.summary,
            description=_join(first.description, second.description),
            location=first.location or second.location or "",
            guests=first.guests if first.guests is not None else second.guests,
            notes=_join(first.notes, second.notes) or None,
            is_manual=True,
            manual_type=ManualType.MERGED.value,
            merged_from_ids=[first.id, second.id],
            source_snapshot=[_snapshot(first), _snapshot(second)],
        )
        self.store.create(merged)
        self.db.commit()

        edit_log.manual_edit("merge", merged.id, merged_from=[first.id, second.id])
        return merged

    def split(self, booking_id: str, split_date: date) -> Tuple[Booking, Booking]:
        """Split a booking at the start of split_date into two manual halves"""
        booking = acquire_row_lock(self.db, Booking, Booking.id == booking_id)
        if booking is None:
            raise BookingNotFoundError(f"Booking {booking_id} not found")
        if booking.is_block:
            raise ManualEditValidationError("Blocks cannot be split")

        self._check_original_available(booking, self.store.hidden_booking_ids())

        start_day, end_day = calendar_day(booking.start), calendar_day(booking.end)
        if not start_day < split_date < end_day:
            raise ManualEditValidationError(
                f"Split date {split_date} must fall strictly between {start_day} and {end_day}"
            )

        if is_date_only(booking.start) and is_date_only(booking.end):
            # All-day stays are cut at UTC midnight like their own bounds
            split_at = to_utc_naive(split_date)
        else:
            split_at = day_start(split_date)
        base_uid = _manual_uid("split")
        snapshot = [_snapshot(booking)]

        halves = []
        for suffix, start, end in (("A", booking.start, split_at), ("B", split_at, booking.end)):
            half = Booking(
                uid=f"{base_uid}-{suffix}",
                source=MANUAL_SOURCE,
                property_name=booking.property_name,
                start=start,
                end=end,
                summary=booking.summary,
                description=booking.description or "",
                location=booking.location or "",
                guests=booking.guests,
                notes=booking.notes,
                is_manual=True,
                manual_type=ManualType.SPLIT.value,
                split_from_id=booking.id,
                source_snapshot=list(snapshot),
            )
            halves.append(self.store.create(half))
        self.db.commit()

        edit_log.manual_edit("split", booking.id, split_date=split_date.isoformat(),
                             parts=[h.id for h in halves])
        return halves[0], halves[1]

    def undo_merge(self, merged_id: str) -> None:
        merged = self._get_manual(merged_id, ManualType.MERGED.value)
        restored = list(merged.merged_from_ids or [])
        self.store.delete_by_id(merged.id)
        self.db.commit()
        edit_log.manual_edit("undo-merge", merged_id, restored=restored)

    def undo_split(self, part_id: str) -> int:
        """Delete every half of the split the given part belongs to"""
        part = self._get_manual(part_id, ManualType.SPLIT.value)
        if not part.split_from_id:
            raise ManualEditValidationError("Split booking has no reference to its original")

        original_id = part.split_from_id
        deleted = self.store.delete_many(split_from_id=original_id, manual_type=ManualType.SPLIT.value)
        self.db.commit()
        edit_log.manual_edit("undo-split", part_id, restored=original_id, deleted=deleted)
        return deleted

    def resolve_conflict(self, manual_id: str, decision: str) -> Booking:
        """
        Settle a drift report: `keep` leaves the manual booking as is,
        `remove` cancels it so its originals become visible again.
        Only merged and split bookings drift; blocks go through
        resolve_block_conflict.
        """
        if decision not in CONFLICT_DECISIONS:
            raise ManualEditValidationError(f"decision must be one of {CONFLICT_DECISIONS}")

        manual = self._get_manual(manual_id)
        if manual.manual_type not in (ManualType.MERGED.value, ManualType.SPLIT.value):
            raise ManualEditValidationError(
                f"Booking {manual_id} is a {manual.manual_type}, only merged or split bookings can be resolved here"
            )
        if decision == "remove":
            manual.status = BookingStatus.CANCELLED.value
            self.db.commit()
        edit_log.manual_edit("resolve-conflict", manual_id, decision=decision)
        return manual

    def delete_manual_booking(self, booking_id: str) -> None:
        manual = self._get_manual(booking_id)
        manual_type = manual.manual_type
        self.store.delete_by_id(manual.id)
        self.db.commit()
        edit_log.manual_edit("delete", booking_id, manual_type=manual_type)

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    def _check_block_range(self, property_name: str, start: datetime, end: datetime,
                           exclude_id: Optional[str] = None):
        if end <= start:
            raise ManualEditValidationError("Block end must be after its start")

        blocks = self.store.find_overlapping(
            property_name, start, end, manual_type=ManualType.BLOCK.value, exclude_id=exclude_id
        )
        if blocks:
            raise BlockOverlapError("block-overlap", [
                {
                    "id": b.id,
                    "start": b.start.isoformat(),
                    "end": b.end.isoformat(),
                    "block_reason": b.block_reason or "",
                }
                for b in blocks
            ])

        upstream = self.store.find_overlapping(property_name, start, end, exclude_id=exclude_id)
        if upstream:
            raise BlockOverlapError("ical-overlap", [
                {
                    "id": b.id,
                    "start": b.start.isoformat(),
                    "end": b.end.isoformat(),
                    "source": b.source or "",
                }
                for b in upstream
            ])

    def create_block(self, property_name: str, start, end, reason: Optional[str] = None) -> Booking:
        start, end = to_utc_naive(start), to_utc_naive(end)
        if not property_name:
            raise ManualEditValidationError("property_name is required")
        self._check_block_range(property_name, start, end)

        block = Booking(
            uid=str(uuid.uuid4()),
            source=MANUAL_SOURCE,
            property_name=property_name,
            start=start,
            end=end,
            summary=LABEL_UNAVAILABLE,
            is_manual=True,
            manual_type=ManualType.BLOCK.value,
            block_reason=reason or "",
            has_conflict=False,
        )
        self.store.create(block)
        self.db.commit()

        edit_log.manual_edit("create-block", block.id, property_name=property_name,
                             start=start.isoformat(), end=end.isoformat())
        return block

    def update_block(self, block_id: str, start, end, reason: Optional[str] = None) -> Booking:
        block = self._get_manual(block_id, ManualType.BLOCK.value)
        start, end = to_utc_naive(start), to_utc_naive(end)
        self._check_block_range(block.property_name, start, end, exclude_id=block.id)

        block.start = start
        block.end = end
        block.block_reason = reason or ""
        block.has_conflict = False
        self.db.commit()

        edit_log.manual_edit("update-block", block.id, start=start.isoformat(), end=end.isoformat())
        return block

    def delete_block(self, block_id: str) -> None:
        block = self._get_manual(block_id, ManualType.BLOCK.value)
        self.store.delete_by_id(block.id)
        self.db.commit()
        edit_log.manual_edit("delete-block", block_id)

    def resolve_block_conflict(self, block_id: str) -> Booking:
        block = self._get_manual(block_id, ManualType.BLOCK.value)
        block.has_conflict = False
        self.db.commit()
        edit_log.manual_edit("resolve-block-conflict", block_id)
        return block

    # ------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------

    def _get_booking(self, booking_id: str) -> Booking:
        booking = self.store.get(booking_id)
        if booking is None:
            raise BookingNotFoundError(f"Booking {booking_id} not found")
        return booking

    def set_guests(self, booking_id: str, guests: int) -> Booking:
        if guests is None or not 0 <= guests <= settings.guests_max:
            raise ManualEditValidationError(f"guests must be between 0 and {settings.guests_max}")
        booking = self._get_booking(booking_id)
        booking.guests = guests
        self.db.commit()
        return booking

    def set_notes(self, booking_id: str, notes: str) -> Booking:
        booking = self._get_booking(booking_id)
        booking.notes = notes
        self.db.commit()
        return booking
