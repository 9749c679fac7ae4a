"""
Cleaning cost summary router
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
import re

from ..database import get_db
from ..services.cleaning_summary import calculate_cleaning_costs
from ..utils.dates import month_bounds, parse_date_param, today

router = APIRouter(prefix="/api/ical/summary", tags=["Summary"])

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@router.get("/current-month")
async def current_month_summary(db: Session = Depends(get_db)):
    first, last = month_bounds(today())
    return {"success": True, **calculate_cleaning_costs(db, first, last)}


@router.get("/next-month")
async def next_month_summary(db: Session = Depends(get_db)):
    first, last = month_bounds(today(), months_ahead=1)
    return {"success": True, **calculate_cleaning_costs(db, first, last)}


@router.get("")
async def range_summary(
    from_: str = Query(..., alias="from"),
    to: str = Query(...),
    db: Session = Depends(get_db)
):
    """Cleaning costs for checkouts between from and to (YYYY-MM-DD, inclusive)"""
    if not DATE_PATTERN.match(from_) or not DATE_PATTERN.match(to):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid date format. Use YYYY-MM-DD format"
        )
    try:
        from_date, to_date = parse_date_param(from_), parse_date_param(to)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid date values. Use valid YYYY-MM-DD format"
        )
    if from_date > to_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Start date cannot be after end date"
        )

    return {"success": True, **calculate_cleaning_costs(db, from_date, to_date)}
