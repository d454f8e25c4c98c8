from sparsh.models.conversation import ChatMessage
from sparsh.models.wellness import (
    AppointmentSlot,
    JournalEntry,
    PeerMessage,
    WellnessLeave,
    WellnessTask,
)

__all__ = [
    "AppointmentSlot",
    "ChatMessage",
    "JournalEntry",
    "PeerMessage",
    "WellnessLeave",
    "WellnessTask",
]
