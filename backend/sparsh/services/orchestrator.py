"""Message orchestration - drives one student's conversation turn by turn.

A turn goes idle -> sending -> evaluating and ends settled, back in idle
(after an error reply) or awaiting fallback consent. After a settled turn
the Guardian agent gets a snapshot of the conversation in the background;
whatever it returns is appended to the conversation as it is *then*, so
turns that happened in between stay in front of it.

Every append (and the one permitted removal, the consent prompt) happens
under a single lock that also covers the store write, which keeps the
persisted order identical to the in-memory order.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from sparsh.models.wellness import WellnessTask
from sparsh.services.llm.base import BaseInterventionAgent, BaseResponder, GatewayReply, ReplyError
from sparsh.services.llm.signals import ReplyKind, classify_reply
from sparsh.services.messages import InterventionKind, Message, Role, to_model_history
from sparsh.services.mood import AvatarState, MoodContext
from sparsh.services.store import StoreAdapter

logger = logging.getLogger(__name__)


class TurnPhase(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    EVALUATING = "evaluating"
    AWAITING_CONSENT = "awaiting-consent"
    SETTLED = "settled"


class FallbackState(str, Enum):
    NORMAL = "normal"
    AWAITING_CONSENT = "awaiting-consent"
    FALLBACK_ACTIVE = "fallback-active"


class TurnEvent(str, Enum):
    SENDING = "sending"
    SETTLED = "settled"
    AUTH_ERROR = "auth-error"
    DELIVERY_ERROR = "delivery-error"
    AWAITING_FALLBACK_CONSENT = "awaiting-fallback-consent"
    AGENT_MESSAGE = "agent-message"
    TASKS_REFRESHED = "tasks-refreshed"


class ConsentAction(str, Enum):
    CONFIRM_FALLBACK = "confirm-fallback"
    DISMISS = "dismiss"


@dataclass(frozen=True)
class TurnResult:
    event: TurnEvent
    reply: Optional[Message] = None
    actions: tuple[ConsentAction, ...] = ()


EventListener = Callable[[TurnEvent, "MessageOrchestrator"], None]


class MessageOrchestrator:
    def __init__(
        self,
        *,
        user_id: str,
        user_key: str,
        store: StoreAdapter,
        responder: BaseResponder,
        agent: BaseInterventionAgent | None = None,
        mood: MoodContext | None = None,
        on_event: EventListener | None = None,
        on_crisis: Callable[[], None] | None = None,
        on_tasks_refreshed: Callable[[list[WellnessTask]], None] | None = None,
        context_flag: bool = True,
    ) -> None:
        self.user_id = user_id
        self.user_key = user_key
        self.store = store
        self.responder = responder
        self.agent = agent
        self.mood = mood or MoodContext()
        self.context_flag = context_flag
        self._on_event = on_event
        self._on_crisis = on_crisis
        self._on_tasks_refreshed = on_tasks_refreshed

        self._messages: list[Message] = []
        self._lock = asyncio.Lock()
        self._background: set[asyncio.Task] = set()

        self.phase = TurnPhase.IDLE
        self.fallback_state = FallbackState.NORMAL
        self.auth_error = False
        self._last_user_text = ""
        self._last_user_message_id: str | None = None
        self._turn_message_id: str | None = None
        self._consent_message_id: str | None = None

    # --- Read-only views ---

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def available_actions(self) -> tuple[ConsentAction, ...]:
        if self.fallback_state is FallbackState.AWAITING_CONSENT:
            return (ConsentAction.CONFIRM_FALLBACK, ConsentAction.DISMISS)
        return ()

    @property
    def busy(self) -> bool:
        return self.phase in (TurnPhase.SENDING, TurnPhase.EVALUATING)

    def model_history(self) -> list[dict]:
        """Conversation as model input, without the turn currently in flight."""
        prior = [m for m in self._messages if m.id != self._turn_message_id]
        return to_model_history(prior)

    # --- Lifecycle ---

    async def load_history(self) -> None:
        history = await self.store.get_chat_history(self.user_id)
        async with self._lock:
            self._messages = history

    async def wait_for_background(self, timeout: float | None = None) -> bool:
        """Wait for dispatched agent runs, including ones started meanwhile.

        Returns False if some were still running when `timeout` ran out.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._background:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            await asyncio.wait(list(self._background), timeout=remaining)
        return True

    async def cancel_background(self) -> None:
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # --- Turn operations ---

    async def submit(self, text: str) -> Optional[TurnResult]:
        if not text or not text.strip():
            return None
        if self.busy:
            logger.warning(f"Ignoring message from {self.user_id}: a turn is already in flight")
            return None

        if self.fallback_state is FallbackState.AWAITING_CONSENT:
            # A new message supersedes the pending offer
            self.fallback_state = FallbackState.NORMAL
            self._consent_message_id = None

        self.phase = TurnPhase.SENDING
        user_message = Message(role=Role.USER, text=text)
        self._last_user_text = text
        self._turn_message_id = user_message.id
        try:
            user_message = await self._append(user_message)
        except Exception:
            self.phase = TurnPhase.IDLE
            self._turn_message_id = None
            raise
        self._last_user_message_id = user_message.id
        self._emit(TurnEvent.SENDING)
        return await self._process(text, force_fallback=False)

    async def confirm_fallback(self) -> Optional[TurnResult]:
        if self.fallback_state is not FallbackState.AWAITING_CONSENT:
            return None

        consent_id = self._consent_message_id
        async with self._lock:
            if consent_id is not None:
                await self.store.delete_chat_message(self.user_id, consent_id)
                self._messages = [m for m in self._messages if m.id != consent_id]
        self._consent_message_id = None
        self.fallback_state = FallbackState.FALLBACK_ACTIVE
        logger.info(f"Fallback model activated for {self.user_id}")

        self._turn_message_id = self._last_user_message_id
        self.phase = TurnPhase.SENDING
        self._emit(TurnEvent.SENDING)
        return await self._process(self._last_user_text, force_fallback=True)

    def dismiss_fallback(self) -> bool:
        if self.fallback_state is not FallbackState.AWAITING_CONSENT:
            return False
        self.fallback_state = FallbackState.NORMAL
        self._consent_message_id = None
        self.phase = TurnPhase.IDLE
        return True

    # --- Internals ---

    async def _process(self, text: str, force_fallback: bool) -> TurnResult:
        self.auth_error = False
        self.mood.set_avatar(AvatarState.LISTENING)
        history = self.model_history()
        force = force_fallback or self.fallback_state is FallbackState.FALLBACK_ACTIVE

        try:
            reply = await self.responder.send(history, text, self.context_flag, force)
        except Exception as e:
            logger.warning(f"Responder raised for {self.user_id}: {e}")
            reply = GatewayReply(text=f"System Error: {e}", error=ReplyError.TRANSIENT)

        self.phase = TurnPhase.EVALUATING
        self.mood.set_avatar(AvatarState.SPEAKING)
        try:
            return await self._evaluate(reply)
        finally:
            if self.busy:
                self.phase = TurnPhase.IDLE
            self._turn_message_id = None
            self.mood.settle_avatar()

    async def _evaluate(self, reply: GatewayReply) -> TurnResult:
        kind = classify_reply(reply)

        if kind in (ReplyKind.AUTH_ERROR, ReplyKind.DELIVERY_ERROR):
            message = Message(role=Role.ASSISTANT, text=reply.text)
            await self._append(message)
            self.phase = TurnPhase.IDLE
            if kind is ReplyKind.AUTH_ERROR:
                self.auth_error = True
                event = TurnEvent.AUTH_ERROR
            else:
                event = TurnEvent.DELIVERY_ERROR
            self._emit(event)
            return TurnResult(event=event, reply=message)

        if kind is ReplyKind.NEEDS_CONSENT:
            message = Message(role=Role.ASSISTANT, text=reply.text, quota_notice=True)
            await self._append(message)
            self._consent_message_id = message.id
            self.fallback_state = FallbackState.AWAITING_CONSENT
            self.phase = TurnPhase.AWAITING_CONSENT
            self._emit(TurnEvent.AWAITING_FALLBACK_CONSENT)
            return TurnResult(
                event=TurnEvent.AWAITING_FALLBACK_CONSENT,
                reply=message,
                actions=self.available_actions,
            )

        if reply.detected_mood:
            self.mood.set_vibe(reply.detected_mood, source="responder")
        if reply.is_crisis:
            self._trigger_crisis()

        message = Message(role=Role.ASSISTANT, text=reply.text)
        await self._append(message)
        self.phase = TurnPhase.SETTLED
        self._emit(TurnEvent.SETTLED)
        self._dispatch_agent(list(self._messages))
        return TurnResult(event=TurnEvent.SETTLED, reply=message)

    async def _append(self, message: Message) -> Message:
        async with self._lock:
            if any(m.id == message.id for m in self._messages):
                message = message.with_new_id()
            # Only what the store accepted is shown
            await self.store.save_chat_message(self.user_id, message)
            self._messages.append(message)
        return message

    def _dispatch_agent(self, snapshot: list[Message]) -> None:
        if self.agent is None:
            return
        task = asyncio.create_task(self._merge_agent_message(snapshot))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _merge_agent_message(self, snapshot: list[Message]) -> None:
        try:
            message = await self.agent.analyze(self.user_id, self.user_key, snapshot)
            if message is None:
                return
            if message.role is not Role.AGENT:
                logger.debug(f"Agent returned role {message.role.value}, storing as agent")
                message = Message(
                    role=Role.AGENT,
                    text=message.text,
                    id=message.id,
                    created_at=message.created_at,
                    metadata=message.metadata,
                )

            kind = message.metadata.kind if message.metadata else None
            if kind is InterventionKind.CRISIS_TRIGGER:
                self._trigger_crisis()
            if kind is InterventionKind.TASK_ASSIGNMENT:
                tasks = await self.store.get_tasks(self.user_key)
                if self._on_tasks_refreshed:
                    self._on_tasks_refreshed(tasks)
                self._emit(TurnEvent.TASKS_REFRESHED)

            await self._append(message)
        except Exception:
            logger.warning(f"Intervention agent run failed for {self.user_id}", exc_info=True)
            return
        self._emit(TurnEvent.AGENT_MESSAGE)

    def _trigger_crisis(self) -> None:
        logger.warning(f"Crisis escalation for {self.user_id}")
        if self._on_crisis:
            self._on_crisis()

    def _emit(self, event: TurnEvent) -> None:
        logger.debug(f"Turn event for {self.user_id}: {event.value}")
        if self._on_event:
            self._on_event(event, self)
