# Services package
from .ical_parser import Reservation, FeedParseError, parse, normalize_summary
from .feed_fetcher import FeedFetcher, FeedTarget, FetchResult, FetchSummary
from .booking_store import BookingStore, BulkWriteResult, UpsertOp, UpdateOp
from .reconciliation import (
    ReconciliationPlan,
    ConflictReport,
    SyncService,
    SyncResult,
    SyncError,
    reconcile,
    compute_changeover_ops,
    detect_conflicts,
    find_block_conflicts,
    reservation_to_fields,
    run_sync
)
from .manual_edits import (
    ManualEditService,
    ManualEditValidationError,
    BookingNotFoundError,
    ManualEditConflictError,
    BlockOverlapError
)

__all__ = [
    "Reservation", "FeedParseError", "parse", "normalize_summary",
    "FeedFetcher", "FeedTarget", "FetchResult", "FetchSummary",
    "BookingStore", "BulkWriteResult", "UpsertOp", "UpdateOp",
    "ReconciliationPlan", "ConflictReport", "SyncService", "SyncResult", "SyncError",
    "reconcile", "compute_changeover_ops", "detect_conflicts", "find_block_conflicts",
    "reservation_to_fields", "run_sync",
    "ManualEditService", "ManualEditValidationError", "BookingNotFoundError",
    "ManualEditConflictError", "BlockOverlapError"
]
