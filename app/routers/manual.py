"""
Manual edits router - merge, split, undo, conflict resolution and blocks.

Domain errors (validation 400, not found 404, overlap/race 409) are mapped
to responses by the handlers registered in main.py.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
import logging

from ..database import get_db
from ..schemas.booking import (
    MergeRequest, SplitRequest, UndoRequest, ResolveConflictRequest,
    BlockCreate, BlockUpdate, BookingResponse
)
from ..services.manual_edits import ManualEditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ical", tags=["Manual edits"])


@router.post("/merge")
async def merge_bookings(data: MergeRequest, db: Session = Depends(get_db)):
    """Merge exactly two adjacent bookings of one property"""
    merged = ManualEditService(db).merge(data.ids[0], data.ids[1])
    return {
        "success": True,
        "message": "Bookings merged.",
        "booking": BookingResponse.model_validate(merged).model_dump(mode="json")
    }


@router.post("/split")
async def split_booking(data: SplitRequest, db: Session = Depends(get_db)):
    """Split a booking into [start, split_date) and [split_date, end)"""
    first, second = ManualEditService(db).split(data.id, data.split_date)
    return {
        "success": True,
        "message": "Booking split.",
        "bookings": [
            BookingResponse.model_validate(first).model_dump(mode="json"),
            BookingResponse.model_validate(second).model_dump(mode="json"),
        ]
    }


@router.post("/undo-merge")
async def undo_merge(data: UndoRequest, db: Session = Depends(get_db)):
    ManualEditService(db).undo_merge(data.id)
    return {"success": True, "message": "Merge undone. The original bookings are visible again."}


@router.post("/undo-split")
async def undo_split(data: UndoRequest, db: Session = Depends(get_db)):
    deleted = ManualEditService(db).undo_split(data.id)
    return {
        "success": True,
        "message": "Split undone. The original booking is visible again.",
        "deleted": deleted
    }


@router.post("/resolve-conflict")
async def resolve_conflict(data: ResolveConflictRequest, db: Session = Depends(get_db)):
    ManualEditService(db).resolve_conflict(data.manual_id, data.decision.value)
    if data.decision.value == "remove":
        message = "Manual booking cancelled. Upstream data applies from the next sync."
    else:
        message = "Manual booking kept."
    return {"success": True, "message": message}


@router.delete("/manual/{booking_id}")
async def delete_manual_booking(booking_id: str, db: Session = Depends(get_db)):
    ManualEditService(db).delete_manual_booking(booking_id)
    return {"success": True}


# ============ Blocks ============

@router.post("/blocks")
async def create_block(data: BlockCreate, db: Session = Depends(get_db)):
    block = ManualEditService(db).create_block(data.property_name, data.start, data.end, data.reason)
    return {"success": True, "block": {"id": block.id}}


@router.put("/blocks/{block_id}")
async def update_block(block_id: str, data: BlockUpdate, db: Session = Depends(get_db)):
    ManualEditService(db).update_block(block_id, data.start, data.end, data.reason)
    return {"success": True}


@router.delete("/blocks/{block_id}")
async def delete_block(block_id: str, db: Session = Depends(get_db)):
    ManualEditService(db).delete_block(block_id)
    return {"success": True}


@router.post("/blocks/{block_id}/resolve-conflict")
async def resolve_block_conflict(block_id: str, db: Session = Depends(get_db)):
    ManualEditService(db).resolve_block_conflict(block_id)
    return {"success": True}
