import uuid
from sqlalchemy import Column, String, Numeric, DateTime
from ..database import Base
from ..utils.dates import utcnow


class FeedSource(Base):
    """
    One external calendar feed for a property (Airbnb, Booking.com, ...).

    The feed URL doubles as the `source` identity of every reservation it
    produces, so two feeds can never collide on (uid, source).
    """
    __tablename__ = "feed_sources"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    property_name = Column(String(200), nullable=False, index=True)
    ical_url = Column(String(1000), nullable=False, unique=True)
    channel = Column(String(50), nullable=True)  # airbnb, booking.com, ...
    group_id = Column(String(36), nullable=True, index=True)
    cleaning_cost = Column(Numeric(10, 2), default=0)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def source_key(self) -> str:
        return self.ical_url

    def __repr__(self):
        return f"<FeedSource {self.property_name} {self.channel or ''}>"
