"""
iCal router - sync, feed preview, booking list, annotations
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import Optional
import logging

from ..database import get_db
from ..config import settings
from ..models.feed_source import FeedSource
from ..schemas.booking import SyncRequest, GuestsUpdate, NotesUpdate, split_names
from ..services.booking_queries import build_booking_filters, list_bookings
from ..services.feed_fetcher import FeedFetcher, FeedTarget
from ..services.manual_edits import ManualEditService
from ..services.reconciliation import SyncError, run_sync
from ..services.sync_scheduler import get_scheduler_status, trigger_manual_sync
from ..utils.dates import DateWindow, parse_date_param

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ical", tags=["iCal"])


def _date_or_400(value: Optional[str], name: str):
    try:
        return parse_date_param(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {name} date format. Use YYYY-MM-DD"
        )


# ============ Sync ============

@router.post("/sync")
async def sync_feeds(
    request: Optional[SyncRequest] = None,
    db: Session = Depends(get_db)
):
    """
    Fetch the selected feeds and reconcile them over [today, today + days_ahead].
    Partial feed failures still count as success; see stats.ical_summary.
    """
    request = request or SyncRequest(days_ahead=settings.default_days_ahead)
    window = DateWindow.days_ahead(request.days_ahead)

    try:
        result = await run_sync(
            db,
            window,
            group_id=request.group_id,
            property_names=request.property_names
        )
    except SyncError as e:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": str(e)}
        )

    return result.to_dict()


@router.get("/fetch")
async def preview_feeds(
    days_ahead: int = Query(35, alias="daysAhead", ge=0, le=730),
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = None,
    sort_by: str = Query("end", alias="sortBy", pattern="^(start|end)$"),
    group_id: Optional[str] = Query(None, alias="groupId"),
    property_names: Optional[str] = Query(None, alias="propertyNames"),
    db: Session = Depends(get_db)
):
    """
    Fetch feeds without writing anything.
    With from/to: reservations overlapping the range. Without both: reservations
    checking out between today and today + daysAhead.
    """
    from_date = _date_or_400(from_, "from")
    to_date = _date_or_400(to, "to")
    if (from_date is None) != (to_date is None):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="from and to must be given together")
    if from_date is not None and from_date > to_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="from cannot be after to")

    query = db.query(FeedSource)
    if group_id:
        query = query.filter(FeedSource.group_id == group_id)
    names = split_names(property_names)
    if names:
        query = query.filter(FeedSource.property_name.in_(names))
    targets = [FeedTarget.from_source(s) for s in query.all()]

    fetcher = FeedFetcher()
    if from_date is None:
        reservations, summary = await fetcher.fetch_reservations(targets, days_ahead, sort_by=sort_by)
    else:
        window = DateWindow.from_days(from_date, to_date)
        reservations, summary = await fetcher.fetch_reservations_in_range(targets, window, sort_by=sort_by)

    return {
        "success": True,
        "count": len(reservations),
        "summary": summary.to_dict(),
        "reservations": [
            {
                "uid": r.uid,
                "source": r.source,
                "property_name": r.property_name,
                "summary": r.summary,
                "start": r.start.isoformat(),
                "end": r.end.isoformat(),
                "description": r.description or "",
                "location": r.location or "",
            }
            for r in reservations
        ]
    }


# ============ Booking list ============

@router.get("/data")
async def get_bookings(
    days_ahead: Optional[int] = Query(None, alias="daysAhead", ge=0, le=730),
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = None,
    sort_by: str = Query("end", alias="sortBy", pattern="^(start|end)$"),
    include_cancelled: bool = Query(False, alias="includeCancelled"),
    include_hidden: bool = Query(False, alias="includeHidden"),
    property_names: Optional[str] = Query(None, alias="propertyNames"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    all_rows: bool = Query(False, alias="all"),
    db: Session = Depends(get_db)
):
    """Visible bookings: rolling window by checkout, or an explicit overlap range"""
    from_date = _date_or_400(from_, "from")
    to_date = _date_or_400(to, "to")
    if from_date and to_date and from_date > to_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="from cannot be after to")

    filters = build_booking_filters(
        window_from=from_date,
        window_to=to_date,
        days_ahead=settings.default_days_ahead if days_ahead is None else days_ahead,
        include_cancelled=include_cancelled,
        all_rows=all_rows
    )
    result = list_bookings(
        db,
        filters,
        page=page,
        limit=limit,
        include_hidden=include_hidden,
        property_names=split_names(property_names),
        sort_by=sort_by
    )
    return {"success": True, **result}


# ============ Annotations ============

@router.post("/guests")
async def set_guests(data: GuestsUpdate, db: Session = Depends(get_db)):
    ManualEditService(db).set_guests(data.id, data.guests)
    return {"success": True}


@router.post("/notes")
async def set_notes(data: NotesUpdate, db: Session = Depends(get_db)):
    ManualEditService(db).set_notes(data.id, data.notes)
    return {"success": True}


# ============ Scheduler ============

@router.get("/scheduler")
async def scheduler_status():
    return get_scheduler_status()


@router.post("/scheduler/run")
async def run_scheduler_now():
    """Run the scheduled sync right away (same window as the cron job)"""
    result = await trigger_manual_sync()
    if not result.get("success"):
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=result)
    return result
