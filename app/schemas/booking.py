from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Union
from datetime import datetime, date
from enum import Enum

from ..utils.dates import to_utc_naive


class ConflictDecision(str, Enum):
    KEEP = "keep"
    REMOVE = "remove"


def split_names(v):
    """Accept "a, b" or ["a", "b"]"""
    if v is None or v == "":
        return None
    if isinstance(v, str):
        names = [n.strip() for n in v.split(",")]
    else:
        names = [str(n).strip() for n in v]
    names = [n for n in names if n]
    return names or None


class SyncRequest(BaseModel):
    days_ahead: int = Field(default=35, ge=0, le=730)
    group_id: Optional[str] = None
    property_names: Optional[List[str]] = None

    @field_validator('property_names', mode='before')
    @classmethod
    def parse_names(cls, v):
        return split_names(v)


class GuestsUpdate(BaseModel):
    id: str = Field(..., min_length=1)
    guests: int = Field(..., ge=0)


class NotesUpdate(BaseModel):
    id: str = Field(..., min_length=1)
    notes: str = Field(default="", max_length=5000)


class MergeRequest(BaseModel):
    ids: List[str] = Field(..., min_length=2, max_length=2, description="Exactly two booking ids")


class SplitRequest(BaseModel):
    id: str = Field(..., min_length=1)
    split_date: date


class UndoRequest(BaseModel):
    id: str = Field(..., min_length=1)


class ResolveConflictRequest(BaseModel):
    manual_id: str = Field(..., min_length=1)
    decision: ConflictDecision


class BlockCreate(BaseModel):
    property_name: str = Field(..., min_length=1, max_length=200)
    start: Union[datetime, date]
    end: Union[datetime, date]
    reason: Optional[str] = Field(default="", max_length=1000)

    @model_validator(mode='after')
    def validate_dates(self):
        if to_utc_naive(self.end) <= to_utc_naive(self.start):
            raise ValueError('Block end must be after its start')
        return self


class BlockUpdate(BaseModel):
    start: Union[datetime, date]
    end: Union[datetime, date]
    reason: Optional[str] = Field(default="", max_length=1000)

    @model_validator(mode='after')
    def validate_dates(self):
        if to_utc_naive(self.end) <= to_utc_naive(self.start):
            raise ValueError('Block end must be after its start')
        return self


class BookingResponse(BaseModel):
    id: str
    uid: str
    source: str
    property_name: str
    start: datetime
    end: datetime
    summary: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    guests: Optional[int] = None
    notes: Optional[str] = None
    status: str
    is_urgent_changeover: bool = False
    is_manual: bool = False
    manual_type: str = "none"
    merged_from_ids: Optional[List[str]] = None
    split_from_id: Optional[str] = None
    has_conflict: bool = False
    block_reason: Optional[str] = None

    class Config:
        from_attributes = True
