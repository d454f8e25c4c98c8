"""Chat message persistence, one append-only log per student."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class ChatMessage(SQLModel, table=True):
    # seq is the append order; message_id is the opaque id shown to clients
    seq: Optional[int] = Field(default=None, primary_key=True)
    message_id: str = Field(index=True)
    user_id: str = Field(index=True)
    role: str  # "user" | "assistant" | "agent"
    content: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    quota_notice: bool = Field(default=False)

    # Intervention metadata, only set on agent messages
    intervention: Optional[str] = None  # crisis_trigger | task_assignment | booking_suggestion
    slot_id: Optional[str] = None
    slot_time: Optional[str] = None
    task_name: Optional[str] = None
