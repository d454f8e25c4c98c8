"""In-memory conversation types shared by the orchestrator, store and agent."""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sparsh.models.conversation import ChatMessage

QUOTA_NOTICE_MARKER = "Token Limit Reached"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    AGENT = "agent"


class InterventionKind(str, Enum):
    CRISIS_TRIGGER = "crisis_trigger"
    TASK_ASSIGNMENT = "task_assignment"
    BOOKING_SUGGESTION = "booking_suggestion"


@dataclass(frozen=True)
class InterventionMetadata:
    kind: InterventionKind
    slot_id: Optional[str] = None
    slot_time: Optional[str] = None
    task_name: Optional[str] = None


@dataclass(frozen=True)
class Message:
    role: Role
    text: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Optional[InterventionMetadata] = None
    quota_notice: bool = False

    @property
    def is_quota_notice(self) -> bool:
        # Rows written before the flag existed only carry the marker text
        return self.quota_notice or QUOTA_NOTICE_MARKER in self.text

    def with_new_id(self) -> "Message":
        return replace(self, id=uuid.uuid4().hex)

    def to_record(self, user_id: str) -> ChatMessage:
        meta = self.metadata
        return ChatMessage(
            message_id=self.id,
            user_id=user_id,
            role=self.role.value,
            content=self.text,
            created_at=self.created_at,
            quota_notice=self.quota_notice,
            intervention=meta.kind.value if meta else None,
            slot_id=meta.slot_id if meta else None,
            slot_time=meta.slot_time if meta else None,
            task_name=meta.task_name if meta else None,
        )

    @classmethod
    def from_record(cls, row: ChatMessage) -> "Message":
        metadata = None
        if row.intervention:
            metadata = InterventionMetadata(
                kind=InterventionKind(row.intervention),
                slot_id=row.slot_id,
                slot_time=row.slot_time,
                task_name=row.task_name,
            )
        created_at = row.created_at
        if created_at.tzinfo is None:
            # SQLite drops the offset
            created_at = created_at.replace(tzinfo=timezone.utc)
        return cls(
            role=Role(row.role),
            text=row.content,
            id=row.message_id,
            created_at=created_at,
            metadata=metadata,
            quota_notice=row.quota_notice,
        )

    def to_dict(self) -> dict:
        data: dict = {
            "id": self.id,
            "role": self.role.value,
            "text": self.text,
            "created_at": self.created_at.isoformat(),
            "quota_notice": self.is_quota_notice,
        }
        if self.metadata:
            data["metadata"] = {
                "type": self.metadata.kind.value,
                "slot_id": self.metadata.slot_id,
                "slot_time": self.metadata.slot_time,
                "task_name": self.metadata.task_name,
            }
        return data


def to_model_history(messages: list[Message]) -> list[dict]:
    """Convert a conversation to Gemini contents, dropping quota notices.

    Agent and assistant turns are both sent as the model's own turns.
    """
    history = []
    for msg in messages:
        if msg.is_quota_notice:
            continue
        role = "user" if msg.role is Role.USER else "model"
        history.append({"role": role, "parts": [{"text": msg.text}]})
    return history
