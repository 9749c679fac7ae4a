"""
Database Helper Utilities for Concurrency Control

Provides:
- Database dialect detection (PostgreSQL vs SQLite)
- Row locking helpers used by manual edits
"""

import logging
from typing import List, Optional, TypeVar, Type
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

T = TypeVar('T')


def is_postgres(db: Session) -> bool:
    """Check if the database is PostgreSQL"""
    bind = db.get_bind()
    return bind is not None and bind.dialect.name == 'postgresql'


def is_sqlite(db: Session) -> bool:
    """Check if the database is SQLite"""
    bind = db.get_bind()
    return bind is None or bind.dialect.name == 'sqlite'


def acquire_row_lock(
    db: Session,
    model: Type[T],
    filter_condition,
    nowait: bool = False
) -> Optional[T]:
    """
    Acquire a row-level lock on a database record.

    Args:
        db: Database session
        model: SQLAlchemy model class
        filter_condition: Filter to find the row
        nowait: If True, raise error immediately if lock unavailable (PostgreSQL only)

    Returns:
        The locked model instance, or None if not found

    Example:
        booking = acquire_row_lock(db, Booking, Booking.id == booking_id)
    """
    query = db.query(model).filter(filter_condition)

    # Only apply locking on PostgreSQL; SQLite serializes writers anyway
    if is_postgres(db):
        query = query.with_for_update(nowait=nowait)

    return query.first()


def acquire_row_locks(
    db: Session,
    model: Type[T],
    filter_condition,
    order_by=None
) -> List[T]:
    """
    Lock every row matching the filter.

    Rows are locked in a stable order (primary key unless given) so two
    transactions locking the same pair cannot deadlock.
    """
    query = db.query(model).filter(filter_condition)
    query = query.order_by(order_by if order_by is not None else model.id)

    if is_postgres(db):
        query = query.with_for_update()

    return query.all()
