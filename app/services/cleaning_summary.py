"""
Cleaning Cost Summary

Counts, for a date range, which properties have at least one checkout and
what their cleaning costs add up to. Each property is charged once per
range, however many checkouts it has.
"""

import logging
from collections import Counter
from datetime import date
from decimal import Decimal
from typing import Dict

from sqlalchemy.orm import Session

from ..models.booking import Booking, BookingStatus
from ..models.feed_source import FeedSource
from ..models.property import Property
from ..utils.dates import day_end, day_start
from .reconciliation import DEFAULT_PROPERTY_NAME

logger = logging.getLogger(__name__)


def cleaning_costs_by_property(db: Session) -> Dict[str, Decimal]:
    """
    Configured cleaning cost per property name.

    The Property row wins; otherwise the first feed source of that property
    that carries a cost (all feeds of one property should agree).
    """
    costs: Dict[str, Decimal] = {}
    for source in db.query(FeedSource).order_by(FeedSource.created_at).all():
        if source.property_name not in costs and source.cleaning_cost:
            costs[source.property_name] = Decimal(source.cleaning_cost)
    for prop in db.query(Property).all():
        if prop.cleaning_cost:
            costs[prop.name] = Decimal(prop.cleaning_cost)
    return costs


def calculate_cleaning_costs(db: Session, from_date: date, to_date: date) -> Dict:
    """
    Cleaning costs for active bookings checking out in [from_date, to_date].

    Returns:
        {total, property_details: [{name, cost, checkouts}], booking_count}
    """
    if from_date > to_date:
        raise ValueError("Start date cannot be after end date")

    bookings = db.query(Booking).filter(
        Booking.status == BookingStatus.ACTIVE.value,
        Booking.end >= day_start(from_date),
        Booking.end <= day_end(to_date),
    ).all()

    costs = cleaning_costs_by_property(db)
    checkouts = Counter(b.property_name or DEFAULT_PROPERTY_NAME for b in bookings)

    total = Decimal("0")
    details = []
    for name in sorted(checkouts):
        cost = costs.get(name, Decimal("0"))
        total += cost
        details.append({"name": name, "cost": float(cost), "checkouts": checkouts[name]})

    logger.debug(f"Cleaning summary {from_date}..{to_date}: {len(details)} properties, total {total}")
    return {
        "total": float(total),
        "property_details": details,
        "booking_count": len(bookings),
    }
