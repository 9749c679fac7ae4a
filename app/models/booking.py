import uuid
from sqlalchemy import Column, String, DateTime, Text, Integer, Boolean, JSON, Index, UniqueConstraint
from ..database import Base
from ..utils.dates import utcnow
import enum


MANUAL_SOURCE = "manual"


class BookingStatus(str, enum.Enum):
    """Soft-delete state of a booking"""
    ACTIVE = "active"
    CANCELLED = "cancelled"


class ManualType(str, enum.Enum):
    """What kind of operator edit produced a manual booking"""
    NONE = "none"
    MERGED = "merged"    # Two adjacent stays shown as one
    SPLIT = "split"      # One half of a split stay
    BLOCK = "block"      # Dates withheld from availability


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # External identity - (uid, source) is unique; manual rows use synthetic uids
    uid = Column(String(255), nullable=False)
    source = Column(String(1000), nullable=False)

    property_name = Column(String(200), nullable=False, index=True)
    start = Column(DateTime, nullable=False, index=True)
    end = Column(DateTime, nullable=False, index=True)
    summary = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)
    location = Column(String(500), nullable=True)

    # User annotations - survive every reconciliation pass
    guests = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(String(20), default=BookingStatus.ACTIVE.value, nullable=False, index=True)
    is_urgent_changeover = Column(Boolean, default=False, nullable=False)

    # Manual edit provenance
    is_manual = Column(Boolean, default=False, nullable=False, index=True)
    manual_type = Column(String(20), default=ManualType.NONE.value, nullable=False)
    merged_from_ids = Column(JSON, nullable=True)   # [booking_id, booking_id]
    split_from_id = Column(String(36), nullable=True, index=True)
    source_snapshot = Column(JSON, nullable=True)   # [{uid, source, start, end}]
    has_conflict = Column(Boolean, default=False, nullable=False)
    block_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("uid", "source", name="uq_booking_uid_source"),
        Index("ix_booking_window", "start", "end"),
        Index("ix_booking_manual_type", "manual_type"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == BookingStatus.ACTIVE.value

    @property
    def is_block(self) -> bool:
        return self.is_manual and self.manual_type == ManualType.BLOCK.value

    def __repr__(self):
        return f"<Booking {self.property_name} {self.start:%Y-%m-%d}-{self.end:%Y-%m-%d} {self.status}>"
