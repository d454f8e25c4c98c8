"""Abstract responder and intervention-agent interfaces. All providers implement these."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sparsh.services.messages import Message


class ReplyError(str, Enum):
    AUTH = "auth"
    TRANSIENT = "transient"


@dataclass
class GatewayReply:
    text: str
    detected_mood: Optional[str] = None
    is_crisis: bool = False
    needs_fallback_consent: bool = False
    error: Optional[ReplyError] = None


class BaseResponder(ABC):
    @abstractmethod
    async def send(
        self,
        history: list[dict],
        new_text: str,
        context_flag: bool = True,
        force_fallback: bool = False,
    ) -> GatewayReply:
        """Answer new_text given the prior turns in Gemini contents format.

        force_fallback skips the primary model and answers with the
        secondary one.
        """
        ...


class BaseInterventionAgent(ABC):
    @abstractmethod
    async def analyze(
        self, user_id: str, user_key: str, conversation: list[Message]
    ) -> Optional[Message]:
        """Look at the whole conversation and maybe return one agent message."""
        ...
