"""
Export router - public block calendar and export token rotation
"""
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response
from sqlalchemy.orm import Session
import logging

from ..database import get_db
from ..services.ical_export import (
    CALENDAR_CONTENT_TYPE,
    build_block_calendar,
    content_disposition,
    exportable_blocks,
    get_property_by_token,
    regenerate_export_token,
)

logger = logging.getLogger(__name__)

# Public: the platforms poll this URL, no auth
router = APIRouter(prefix="/ical", tags=["Export"])

properties_router = APIRouter(prefix="/api/properties", tags=["Export"])


@router.get("/export/{token}")
async def export_calendar(token: str, db: Session = Depends(get_db)):
    property_obj = get_property_by_token(db, token)
    if property_obj is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Calendar not found")

    body = build_block_calendar(property_obj, exportable_blocks(db, property_obj.name))
    return Response(
        content=body,
        media_type=CALENDAR_CONTENT_TYPE,
        headers={"Content-Disposition": content_disposition(property_obj)}
    )


@properties_router.post("/{property_id}/export-token")
async def rotate_export_token(property_id: str, db: Session = Depends(get_db)):
    """Issue a new export token; subscribers of the old URL get 404 from now on"""
    property_obj = regenerate_export_token(db, property_id)
    if property_obj is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Property not found")
    return {
        "success": True,
        "export_token": property_obj.export_token,
        "export_path": f"/ical/export/{property_obj.export_token}"
    }
