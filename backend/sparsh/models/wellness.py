"""Tasks, leave records, counselor slots, journal entries and peer messages."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel


class SlotStatus(str, Enum):
    OPEN = "open"
    REQUESTED = "requested"
    CONFIRMED = "confirmed"


def _new_id() -> str:
    return uuid.uuid4().hex


class WellnessTask(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    user_key: str = Field(index=True)  # student email
    title: str
    assigned_by: str
    is_completed: bool = Field(default=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class WellnessLeave(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    user_key: str = Field(index=True)
    is_active: bool = Field(default=True)
    issued_by: str
    expiry_date: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AppointmentSlot(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    counselor_id: str
    counselor_name: str
    date: str
    time: str
    status: str = Field(default="open", index=True)  # open | requested | confirmed
    booked_by_student_id: Optional[str] = None
    booked_by_student_name: Optional[str] = None


class JournalEntry(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(index=True)
    date: str  # ISO timestamp of the entry
    vibe: str
    text: str


class PeerMessage(SQLModel, table=True):
    seq: Optional[int] = Field(default=None, primary_key=True)
    id: str = Field(default_factory=_new_id, index=True)
    sender_id: str = Field(index=True)
    receiver_id: str = Field(index=True)
    text: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    is_read: bool = Field(default=False)
