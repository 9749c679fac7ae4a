import uuid
import secrets
from sqlalchemy import Column, String, Numeric, DateTime
from ..database import Base
from ..utils.dates import utcnow


def generate_export_token() -> str:
    """Unguessable token for the public block-only calendar URL"""
    return secrets.token_urlsafe(32)


class Property(Base):
    """
    A rentable property as the operator sees it.

    Several feed sources (one per platform) can point at the same property
    name; the export token and cleaning cost belong to the property itself.
    """
    __tablename__ = "properties"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(200), nullable=False, unique=True)
    display_name = Column(String(200), nullable=False)
    export_token = Column(String(64), nullable=False, unique=True, index=True, default=generate_export_token)
    cleaning_cost = Column(Numeric(10, 2), default=0)
    group_id = Column(String(36), nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Property {self.name}>"
