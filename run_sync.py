"""
Script to run one feed sync from the command line
Useful for cron hosts that don't keep the API process running
"""
import argparse
import asyncio
import sys
sys.path.insert(0, '.')

from app.config import settings
from app.database import SessionLocal, create_tables
from app.services.reconciliation import SyncError, run_sync
from app.services.sync_scheduler import scheduled_window
from app.utils.dates import DateWindow
from app.utils.logging_config import setup_logging


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Sync iCal feeds into the booking store")
    parser.add_argument("--days-ahead", type=int, default=None,
                        help="Window length in days (default: scheduled window)")
    parser.add_argument("--from-today", action="store_true",
                        help="Start the window today instead of tomorrow")
    parser.add_argument("--group-id", default=None, help="Only sync sources of this group")
    parser.add_argument("--property", action="append", dest="properties",
                        help="Only sync this property (repeatable)")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(level=settings.log_level, json_format=settings.log_json)
    create_tables()

    if args.from_today:
        window = DateWindow.days_ahead(
            settings.default_days_ahead if args.days_ahead is None else args.days_ahead
        )
    else:
        window = scheduled_window(args.days_ahead)

    db = SessionLocal()
    try:
        print("=" * 50)
        print(f"Syncing feeds {window.start:%Y-%m-%d} -> {window.end:%Y-%m-%d}")
        print("=" * 50)

        result = asyncio.run(run_sync(db, window, group_id=args.group_id, property_names=args.properties))
        stats = result.stats()
        summary = stats["ical_summary"]

        print(f"\n{result.message}")
        print(f"  Feeds:       {summary['successful_urls']}/{summary['total_urls']} ok")
        print(f"  Updated:     {stats['bookings_updated']}")
        print(f"  Cancelled:   {stats['bookings_cancelled']}")
        print(f"  Changeovers: {stats['changeovers_updated']}")
        print(f"  Blocks hit:  {stats['blocks_flagged']}")
        print(f"  Conflicts:   {len(stats['conflicts'])}")
        for error in summary["errors"]:
            print(f"  ! {error}")
        return 0
    except SyncError as e:
        print(f"Sync failed: {e}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
