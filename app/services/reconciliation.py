"""
Reservation Reconciliation Engine

Merges freshly fetched reservations into the booking store:
1. Upsert every fresh reservation by (uid, source), keeping guests/notes
2. Soft-cancel stored bookings that vanished from their feed
3. Recompute same-day changeover flags on the active set
4. Flag blocks that now collide with an upstream booking
5. Report manual merges/splits whose originals drifted upstream

The planning functions are pure; SyncService applies the plans through the
BookingStore in two commits (upserts/cancels, then derived flags). A crash
between the two commits heals on the next run because every step is
idempotent.
"""

import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.booking import Booking, BookingStatus, ManualType
from ..models.feed_source import FeedSource
from ..utils.dates import DateWindow, calendar_day
from ..utils.logging_config import get_logger, sync_id_var
from .booking_store import BookingStore, UpdateOp, UpsertOp
from .feed_fetcher import FeedFetcher, FeedTarget, FetchSummary
from .ical_parser import Reservation

logger = logging.getLogger(__name__)
sync_log = get_logger(__name__)

DEFAULT_PROPERTY_NAME = "Unknown"


class SyncError(Exception):
    """A store write failed; the run was rolled back"""


@dataclass
class ReconciliationPlan:
    upsert_ops: List[UpsertOp] = field(default_factory=list)
    cancel_ops: List[UpdateOp] = field(default_factory=list)


@dataclass
class ConflictReport:
    """A manual merge/split whose originals changed dates upstream"""
    manual_booking: Dict
    changed_originals: List[Dict]
    reason: str

    def to_dict(self) -> Dict:
        return {
            "manual_booking": self.manual_booking,
            "changed_originals": self.changed_originals,
            "reason": self.reason,
        }


def reservation_to_fields(reservation: Reservation) -> Dict:
    """Upstream-owned booking fields taken from a fresh reservation"""
    return {
        "property_name": reservation.property_name or DEFAULT_PROPERTY_NAME,
        "summary": reservation.summary,
        "start": reservation.start,
        "end": reservation.end,
        "description": reservation.description or "",
        "location": reservation.location or "",
    }


def reconcile(
    existing: Iterable[Booking],
    fresh: Iterable[Reservation],
    window: DateWindow,
    hidden_ids: Optional[Set[str]] = None
) -> ReconciliationPlan:
    """
    Plan the upserts and cancellations that bring the store in line with a fetch.

    Args:
        existing: Stored non-manual bookings of the successfully fetched feeds
        fresh: Reservations from those feeds
        window: Only bookings overlapping the window can be cancelled
        hidden_ids: Originals superseded by an active merge/split; their status
            is never touched by an upsert

    Manual bookings in `existing` are ignored.
    """
    hidden_ids = hidden_ids or set()
    by_key = {(b.uid, b.source): b for b in existing if not b.is_manual}
    pending_cancel = {
        key: b for key, b in by_key.items()
        if window.overlaps(b.start, b.end)
    }

    plan = ReconciliationPlan()
    seen = set()
    for reservation in fresh:
        key = reservation.key
        if key in seen:
            logger.debug(f"Duplicate event {key} in one fetch, keeping the first")
            continue
        seen.add(key)

        current = by_key.get(key)
        fields = reservation_to_fields(reservation)

        # User annotations are carried forward untouched
        if current is not None:
            if current.guests is not None:
                fields["guests"] = current.guests
            if current.notes:
                fields["notes"] = current.notes

        if current is None or current.id not in hidden_ids:
            fields["status"] = BookingStatus.ACTIVE.value

        plan.upsert_ops.append(UpsertOp(uid=reservation.uid, source=reservation.source, fields=fields))
        pending_cancel.pop(key, None)

    for booking in pending_cancel.values():
        if booking.status != BookingStatus.CANCELLED.value:
            plan.cancel_ops.append(UpdateOp(
                booking_id=booking.id,
                fields={"status": BookingStatus.CANCELLED.value}
            ))

    return plan


def compute_changeover_ops(active: Iterable[Booking], hidden_ids: Optional[Set[str]] = None) -> List[UpdateOp]:
    """
    Flag bookings whose checkout day is another booking's check-in day.

    Hidden originals take no part in adjacency and are always unflagged.
    Only flags that actually change produce an op.
    """
    hidden_ids = hidden_ids or set()
    by_property: Dict[str, List[Booking]] = defaultdict(list)
    hidden_rows: List[Booking] = []
    for booking in active:
        if booking.id in hidden_ids:
            hidden_rows.append(booking)
        else:
            by_property[booking.property_name or DEFAULT_PROPERTY_NAME].append(booking)

    ops: List[UpdateOp] = []
    for bookings in by_property.values():
        checkins = defaultdict(set)
        for b in bookings:
            checkins[calendar_day(b.start)].add(b.id)

        for b in bookings:
            others = checkins.get(calendar_day(b.end), set()) - {b.id}
            flag = bool(others)
            if bool(b.is_urgent_changeover) != flag:
                ops.append(UpdateOp(booking_id=b.id, fields={"is_urgent_changeover": flag}))

    for b in hidden_rows:
        if b.is_urgent_changeover:
            ops.append(UpdateOp(booking_id=b.id, fields={"is_urgent_changeover": False}))

    return ops


def find_block_conflicts(active: Iterable[Booking]) -> List[UpdateOp]:
    """
    Raise has_conflict on active blocks overlapping an active upstream booking.

    Half-open overlap, so a block ending on a check-in day is fine. The flag
    is only ever raised here; clearing it is an explicit operator action.
    """
    blocks: Dict[str, List[Booking]] = defaultdict(list)
    upstream: Dict[str, List[Booking]] = defaultdict(list)
    for b in active:
        if b.is_block:
            blocks[b.property_name].append(b)
        elif not b.is_manual:
            upstream[b.property_name].append(b)

    ops: List[UpdateOp] = []
    for property_name, property_blocks in blocks.items():
        for block in property_blocks:
            if block.has_conflict:
                continue
            if any(b.start < block.end and b.end > block.start for b in upstream.get(property_name, [])):
                ops.append(UpdateOp(booking_id=block.id, fields={"has_conflict": True}))
    return ops


def _snapshot_day(value):
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return calendar_day(value)


def detect_conflicts(manual_bookings: Iterable[Booking], fresh: Iterable[Reservation]) -> List[ConflictReport]:
    """
    Compare each manual merge/split snapshot against the fresh upstream dates.

    Only originals present in this fetch are compared. Reports are advisory
    and keep re-appearing until the manual booking is undone or removed.
    """
    fresh_by_key = {r.key: r for r in fresh}
    reports: List[ConflictReport] = []

    for manual in manual_bookings:
        if not manual.source_snapshot or manual.status != BookingStatus.ACTIVE.value:
            continue

        changed = []
        for entry in manual.source_snapshot:
            current = fresh_by_key.get((entry.get("uid"), entry.get("source")))
            if current is None:
                continue
            snap_start, snap_end = _snapshot_day(entry["start"]), _snapshot_day(entry["end"])
            new_start, new_end = calendar_day(current.start), calendar_day(current.end)
            if (snap_start, snap_end) != (new_start, new_end):
                changed.append({
                    "uid": entry.get("uid"),
                    "snapshot_start": snap_start.isoformat(),
                    "snapshot_end": snap_end.isoformat(),
                    "new_start": new_start.isoformat(),
                    "new_end": new_end.isoformat(),
                })

        if changed:
            reports.append(ConflictReport(
                manual_booking={
                    "id": manual.id,
                    "property_name": manual.property_name,
                    "start": manual.start.isoformat(),
                    "end": manual.end.isoformat(),
                    "manual_type": manual.manual_type,
                },
                changed_originals=changed,
                reason=f"{len(changed)} original booking(s) changed dates upstream after the {manual.manual_type}",
            ))

    return reports


@dataclass
class SyncResult:
    """Outcome of one reconciliation run"""
    success: bool
    sync_id: str
    window: DateWindow
    message: str = ""
    properties_synced: int = 0
    bookings_updated: int = 0
    bookings_cancelled: int = 0
    changeovers_updated: int = 0
    blocks_flagged: int = 0
    conflicts: List[ConflictReport] = field(default_factory=list)
    fetch_summary: FetchSummary = field(default_factory=FetchSummary)
    duration_ms: float = 0.0

    def stats(self) -> Dict:
        return {
            "properties_synced": self.properties_synced,
            "bookings_updated": self.bookings_updated,
            "bookings_cancelled": self.bookings_cancelled,
            "changeovers_updated": self.changeovers_updated,
            "blocks_flagged": self.blocks_flagged,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "ical_summary": self.fetch_summary.to_dict(),
        }

    def to_dict(self) -> Dict:
        return {
            "success": self.success,
            "message": self.message,
            "stats": self.stats(),
            "window": self.window.to_dict(),
            "sync_id": self.sync_id,
            "duration_ms": round(self.duration_ms, 1),
        }


class SyncService:
    """
    Runs fetch -> reconcile -> write for a set of feed sources.

    Usage:
        result = await SyncService(db).sync(DateWindow.days_ahead(35))
    """

    def __init__(self, db: Session, fetcher: Optional[FeedFetcher] = None):
        self.db = db
        self.store = BookingStore(db)
        self.fetcher = fetcher or FeedFetcher()

    def select_sources(
        self,
        group_id: Optional[str] = None,
        property_names: Optional[List[str]] = None
    ) -> List[FeedSource]:
        query = self.db.query(FeedSource)
        if group_id:
            query = query.filter(FeedSource.group_id == group_id)
        if property_names:
            query = query.filter(FeedSource.property_name.in_(property_names))
        return query.order_by(FeedSource.property_name).all()

    async def sync(
        self,
        window: DateWindow,
        group_id: Optional[str] = None,
        property_names: Optional[List[str]] = None
    ) -> SyncResult:
        """
        Sync the selected feeds over the window.

        Raises:
            SyncError: a store write failed (the run is rolled back)
        """
        sync_id = f"sync_{uuid.uuid4().hex[:12]}"
        token = sync_id_var.set(sync_id)
        started = time.monotonic()
        try:
            result = await self._sync(sync_id, window, group_id, property_names)
        finally:
            sync_id_var.reset(token)
        result.duration_ms = (time.monotonic() - started) * 1000
        return result

    async def _sync(self, sync_id, window, group_id, property_names) -> SyncResult:
        sources = self.select_sources(group_id, property_names)
        if not sources:
            logger.warning("No feed sources matched, nothing to sync")
            return SyncResult(
                success=True,
                sync_id=sync_id,
                window=window,
                message="No feed sources found to sync. Check the filters or add iCal sources.",
            )

        targets = [FeedTarget.from_source(s) for s in sources]
        started = time.monotonic()
        sync_log.sync_started(len(targets), window.start.isoformat(), window.end.isoformat())

        fresh, summary = await self.fetcher.fetch_reservations_in_range(targets, window)
        if summary.errors:
            logger.warning(f"Feed errors during sync: {summary.errors}")

        failed = set(summary.failed_sources)
        fetched_sources = [t.url for t in targets if t.url not in failed]

        try:
            upserted, cancelled = self._apply_reconciliation(fresh, fetched_sources, window)
            changeovers, flagged = self._apply_derived_flags(window)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error during sync, rolled back: {e}")
            raise SyncError(f"Database error during sync: {e}") from e

        conflicts = detect_conflicts(
            self.store.find_active_manual([ManualType.MERGED.value, ManualType.SPLIT.value]),
            fresh
        )
        if conflicts:
            logger.info(f"{len(conflicts)} manual booking(s) drifted from upstream")

        result = SyncResult(
            success=True,
            sync_id=sync_id,
            window=window,
            properties_synced=len({s.property_name for s in sources}),
            bookings_updated=upserted,
            bookings_cancelled=cancelled,
            changeovers_updated=changeovers,
            blocks_flagged=flagged,
            conflicts=conflicts,
            fetch_summary=summary,
        )
        result.message = (
            f"Sync finished: {len(targets)} feeds, {upserted} bookings updated, "
            f"{cancelled} cancelled, {summary.failed_urls} feeds failed."
        )
        sync_log.sync_completed(
            {
                "upserted": upserted,
                "cancelled": cancelled,
                "changeovers": changeovers,
                "blocks_flagged": flagged,
                "conflicts": len(conflicts),
                "failed_urls": summary.failed_urls,
            },
            duration_ms=(time.monotonic() - started) * 1000
        )
        return result

    def _apply_reconciliation(self, fresh: List[Reservation], fetched_sources: List[str], window: DateWindow):
        hidden = self.store.hidden_booking_ids()
        existing = self.store.find_in_window(fetched_sources, window)

        # Fresh events whose stored copy sits outside the window still keep their annotations
        known = {(b.uid, b.source) for b in existing}
        outside = self.store.find_by_keys(r.key for r in fresh if r.key not in known)

        plan = reconcile(existing + list(outside.values()), fresh, window, hidden)
        upsert_result = self.store.bulk_upsert(plan.upsert_ops)
        cancel_result = self.store.bulk_update(plan.cancel_ops)
        self.db.commit()

        logger.info(
            f"Upserts: {upsert_result.upserted} new, {upsert_result.modified} modified, "
            f"{upsert_result.matched - upsert_result.modified} unchanged; "
            f"cancelled {cancel_result.modified}"
        )
        return upsert_result.changed, cancel_result.modified

    def _apply_derived_flags(self, window: DateWindow):
        active = self.store.find_active(window=window)
        hidden = self.store.hidden_booking_ids()

        changeover_ops = compute_changeover_ops(active, hidden)
        block_ops = find_block_conflicts(active)
        self.store.bulk_update(changeover_ops + block_ops)
        self.db.commit()

        if block_ops:
            logger.warning(f"{len(block_ops)} block(s) now overlap an upstream booking")
        return len(changeover_ops), len(block_ops)


async def run_sync(
    db: Session,
    window: DateWindow,
    group_id: Optional[str] = None,
    property_names: Optional[List[str]] = None,
    fetcher: Optional[FeedFetcher] = None
) -> SyncResult:
    """Convenience wrapper used by the router, the scheduler and the CLI"""
    return await SyncService(db, fetcher=fetcher).sync(window, group_id, property_names)
