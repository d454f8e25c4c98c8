"""Guardian - the background sentiment and scheduling agent.

Runs after a turn has settled, reads the recent conversation and decides
whether to step in: escalate a crisis, assign a small wellness task, or
suggest an open counselor slot. Most turns need nothing.
"""

import asyncio
import json
import logging
import re
from typing import Optional

from google import genai
from google.genai import types

from sparsh.core.config import settings
from sparsh.core.errors import AgentDispatchFailure
from sparsh.models.wellness import SlotStatus
from sparsh.services.llm.base import BaseInterventionAgent
from sparsh.services.messages import InterventionKind, InterventionMetadata, Message, Role
from sparsh.services.store import StoreAdapter

logger = logging.getLogger(__name__)

GUARDIAN_NAME = "SParsh Guardian"
WINDOW = 12  # messages considered per analysis

_CRISIS_PATTERNS = [
    re.compile(r"suicid", re.IGNORECASE),
    re.compile(r"kill (myself|me)", re.IGNORECASE),
    re.compile(r"self[- ]?harm", re.IGNORECASE),
    re.compile(r"end (it all|my life)", re.IGNORECASE),
    re.compile(r"overdose", re.IGNORECASE),
    re.compile(r"don'?t want to (live|be alive)", re.IGNORECASE),
]

CRISIS_MESSAGE = (
    "It sounds like you are going through something really painful. "
    "I'm connecting you with immediate support right now. You are not alone."
)

ANALYSIS_PROMPT = """You watch a student's conversation with a wellness companion.
Decide whether one gentle intervention would help right now.

Answer with a JSON object:
{"action": "none" | "assign_task" | "suggest_booking",
 "message": "<one or two sentences addressed to the student>",
 "task_title": "<short wellness task, only for assign_task>"}

Use assign_task for sustained stress that a small routine could ease
(a walk, a breathing exercise, a sleep wind-down). Use suggest_booking when the
student would benefit from talking to a counselor. Prefer "none"."""


def _is_crisis_text(text: str) -> bool:
    return any(pattern.search(text) for pattern in _CRISIS_PATTERNS)


def _transcript(conversation: list[Message]) -> str:
    lines = []
    for msg in conversation[-WINDOW:]:
        if msg.is_quota_notice:
            continue
        lines.append(f"{msg.role.value}: {msg.text}")
    return "\n".join(lines)


class GuardianAgent(BaseInterventionAgent):
    def __init__(self, store: StoreAdapter | None = None):
        self.store = store or StoreAdapter()
        self.model = settings.guardian_model
        self.timeout = settings.responder_timeout_seconds
        self._client: genai.Client | None = None

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            if not settings.gemini_api_key:
                raise AgentDispatchFailure("Gemini API key is not configured")
            self._client = genai.Client(api_key=settings.gemini_api_key)
        return self._client

    async def analyze(
        self, user_id: str, user_key: str, conversation: list[Message]
    ) -> Optional[Message]:
        recent_user_turns = [m for m in conversation[-WINDOW:] if m.role is Role.USER]
        if not recent_user_turns:
            return None

        # Keyword screen runs first and needs no model call
        if _is_crisis_text(recent_user_turns[-1].text):
            logger.warning(f"Crisis language detected for {user_id}")
            return Message(
                role=Role.AGENT,
                text=CRISIS_MESSAGE,
                metadata=InterventionMetadata(kind=InterventionKind.CRISIS_TRIGGER),
            )

        decision = await self._decide(_transcript(conversation))
        action = decision.get("action", "none")
        text = str(decision.get("message") or "").strip()
        logger.info(f"Guardian decision for {user_id}: {action}")

        if action == "assign_task":
            title = str(decision.get("task_title") or "").strip()
            if not title or not text:
                raise AgentDispatchFailure(f"assign_task without a title or message: {decision}")
            await self.store.assign_task(user_key, title, GUARDIAN_NAME)
            return Message(
                role=Role.AGENT,
                text=text,
                metadata=InterventionMetadata(kind=InterventionKind.TASK_ASSIGNMENT, task_name=title),
            )

        if action == "suggest_booking":
            if not text:
                raise AgentDispatchFailure(f"suggest_booking without a message: {decision}")
            slots = await self.store.get_slots()
            open_slot = next((s for s in slots if s.status == SlotStatus.OPEN.value), None)
            if open_slot is None:
                return Message(role=Role.AGENT, text=text)
            return Message(
                role=Role.AGENT,
                text=text,
                metadata=InterventionMetadata(
                    kind=InterventionKind.BOOKING_SUGGESTION,
                    slot_id=open_slot.id,
                    slot_time=f"{open_slot.date} {open_slot.time}",
                ),
            )

        return None

    async def _decide(self, transcript: str) -> dict:
        config = types.GenerateContentConfig(
            system_instruction=ANALYSIS_PROMPT,
            response_mime_type="application/json",
        )
        client = self.client
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    client.models.generate_content,
                    model=self.model,
                    contents=[{"role": "user", "parts": [{"text": transcript}]}],
                    config=config,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise AgentDispatchFailure(f"Guardian did not answer within {self.timeout:.0f}s") from e
        except Exception as e:
            raise AgentDispatchFailure(f"Guardian model call failed: {e}") from e

        try:
            decision = json.loads(response.text or "")
        except json.JSONDecodeError as e:
            raise AgentDispatchFailure(f"Guardian returned non-JSON output: {response.text!r}") from e
        if not isinstance(decision, dict):
            raise AgentDispatchFailure(f"Guardian returned {type(decision).__name__}, expected object")
        return decision
