"""Student dashboard session - the per-connection view state.

Holds the view plumbing (tab, peer chat visibility, syncing flag) as
explicit fields, wires the orchestrator, slot coordinator and poller
together, and queues JSON frames for whoever renders the dashboard.
"""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sparsh.models.wellness import JournalEntry, PeerMessage, WellnessLeave, WellnessTask
from sparsh.services.llm.base import BaseInterventionAgent, BaseResponder
from sparsh.services.mood import MoodContext
from sparsh.services.orchestrator import MessageOrchestrator, TurnEvent, TurnResult
from sparsh.services.slots import BookingOutcome, SlotReservationCoordinator, display_name_from_email
from sparsh.services.store import StoreAdapter
from sparsh.services.sync_poller import PollerConfig, SyncPoller

logger = logging.getLogger(__name__)

JOURNAL_SAVED_NOTICE = "Journal Entry Saved Successfully."


class Tab(str, Enum):
    HOME = "home"
    JOURNAL = "journal"
    TASKS = "tasks"
    BOOKING = "booking"


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


class DashboardSession:
    def __init__(
        self,
        *,
        user_id: str,
        user_key: str,
        store: StoreAdapter,
        responder: BaseResponder,
        agent: BaseInterventionAgent | None = None,
        counselor_id: str = "counselor_dimple",
        sync_interval: float = 5.0,
        avatar_idle_delay: float = 3.0,
        background_drain: float = 30.0,
    ) -> None:
        self.user_id = user_id
        self.user_key = user_key
        self.store = store
        self.counselor_id = counselor_id
        self.sync_interval = sync_interval
        self.background_drain = background_drain

        self.active_tab = Tab.HOME
        self.peer_open = False
        self.sync_status = SyncStatus.IDLE
        self.tasks: list[WellnessTask] = []
        self.active_leave: Optional[WellnessLeave] = None
        self.peer_messages: list[PeerMessage] = []
        self.outbox: asyncio.Queue[dict] = asyncio.Queue()

        self.mood = MoodContext(avatar_idle_delay, on_change=lambda _: self._publish_state())
        self.orchestrator = MessageOrchestrator(
            user_id=user_id,
            user_key=user_key,
            store=store,
            responder=responder,
            agent=agent,
            mood=self.mood,
            on_event=self._on_turn_event,
            on_crisis=self._on_crisis,
            on_tasks_refreshed=self._on_tasks_refreshed,
        )
        self.slots = SlotReservationCoordinator(store, user_id, display_name_from_email(user_key))
        self.poller: Optional[SyncPoller] = None

    # --- Lifecycle ---

    async def __aenter__(self) -> "DashboardSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        await self.load()
        await self._restart_poller()

    async def close(self) -> None:
        if self.poller is not None:
            await self.poller.stop()
            self.poller = None
        # Let in-flight Guardian runs land in the store, within limits
        if not await self.orchestrator.wait_for_background(self.background_drain):
            logger.warning(f"Abandoning Guardian runs still pending for {self.user_id}")
            await self.orchestrator.cancel_background()
        self.mood.close()

    async def load(self) -> None:
        self.sync_status = SyncStatus.SYNCING
        try:
            await self.orchestrator.load_history()
            self.tasks = await self.store.get_tasks(self.user_key)
            self.active_leave = await self.store.get_active_leave(self.user_key)
            await self.slots.refresh()
        finally:
            self.sync_status = SyncStatus.IDLE
        self._publish_state()
        self._publish_slots()
        self._publish_tasks()

    async def _restart_poller(self) -> None:
        if self.poller is not None:
            await self.poller.stop()
        self.poller = SyncPoller(
            PollerConfig(user_id=self.user_id, counselor_id=self.counselor_id, peer_open=self.peer_open),
            refresh_slots=self.refresh_slots,
            refresh_peer=self.refresh_peer,
            interval=self.sync_interval,
        )
        self.poller.start()

    # --- View state ---

    def set_tab(self, tab: Tab | str) -> None:
        self.active_tab = Tab(tab)
        self._publish_state()

    async def set_peer_open(self, peer_open: bool) -> None:
        if peer_open == self.peer_open:
            return
        self.peer_open = peer_open
        logger.debug(f"Peer chat {'opened' if peer_open else 'closed'} for {self.user_id}")
        if peer_open:
            await self.refresh_peer()
        await self._restart_poller()
        self._publish_state()

    def set_vibe(self, vibe: str) -> None:
        self.mood.set_vibe(vibe, source="student")

    # --- Conversation ---

    async def send_message(self, text: str) -> Optional[TurnResult]:
        return await self.orchestrator.submit(text)

    async def confirm_fallback(self) -> Optional[TurnResult]:
        return await self.orchestrator.confirm_fallback()

    def dismiss_fallback(self) -> None:
        if self.orchestrator.dismiss_fallback():
            self._publish_state()

    # --- Refreshes (also driven by the poller) ---

    async def refresh_slots(self) -> None:
        await self.slots.refresh()
        self._publish_slots()

    async def refresh_peer(self) -> None:
        self.peer_messages = await self.store.get_p2p_thread(self.user_id, self.counselor_id)
        self._publish({
            "type": "peer_thread",
            "messages": [m.model_dump(mode="json") for m in self.peer_messages],
        })

    # --- Slots ---

    async def book_slot(self, slot_id: str) -> BookingOutcome:
        outcome = await self._syncing(self.slots.request(slot_id))
        self._publish_slots()
        self._publish_notice(outcome.notice)
        return outcome

    async def cancel_slot(self, slot_id: str) -> BookingOutcome:
        outcome = await self._syncing(self.slots.cancel(slot_id))
        self._publish_slots()
        self._publish_notice(outcome.notice)
        return outcome

    # --- Tasks, journal, peer chat ---

    async def toggle_task(self, task_id: str) -> bool:
        for task in self.tasks:
            if task.id == task_id:
                task.is_completed = not task.is_completed
        self._publish_tasks()
        toggled = await self.store.toggle_task_completion(self.user_key, task_id)
        if not toggled:
            # Undo the optimistic flip with what the store holds
            self.tasks = await self.store.get_tasks(self.user_key)
            self._publish_tasks()
        return toggled

    async def save_journal(self, text: str) -> bool:
        if not text.strip() or not self.mood.vibe:
            return False
        entry = JournalEntry(
            user_id=self.user_id,
            date=datetime.now(timezone.utc).isoformat(),
            vibe=self.mood.vibe,
            text=text,
        )
        await self._syncing(self.store.save_journal(self.user_id, entry))
        self._publish_notice(JOURNAL_SAVED_NOTICE)
        return True

    async def send_peer_message(self, text: str) -> bool:
        if not text.strip():
            return False
        await self.store.send_p2p_message(
            PeerMessage(sender_id=self.user_id, receiver_id=self.counselor_id, text=text)
        )
        await self.refresh_peer()
        return True

    # --- Orchestrator callbacks ---

    def _on_turn_event(self, event: TurnEvent, orchestrator: MessageOrchestrator) -> None:
        self._publish({
            "type": "event",
            "event": event.value,
            "messages": [m.to_dict() for m in orchestrator.messages],
            "actions": [a.value for a in orchestrator.available_actions],
        })
        self._publish_state()

    def _on_crisis(self) -> None:
        self._publish({"type": "crisis"})

    def _on_tasks_refreshed(self, tasks: list[WellnessTask]) -> None:
        self.tasks = tasks
        self._publish_tasks()

    # --- Frames ---

    async def _syncing(self, awaitable):
        self.sync_status = SyncStatus.SYNCING
        try:
            return await awaitable
        finally:
            self.sync_status = SyncStatus.IDLE

    def state(self) -> dict:
        orch = self.orchestrator
        return {
            "active_tab": self.active_tab.value,
            "peer_open": self.peer_open,
            "sync_status": self.sync_status.value,
            "phase": orch.phase.value,
            "fallback_state": orch.fallback_state.value,
            "auth_error": orch.auth_error,
            "mood": self.mood.to_dict(),
            "on_leave": bool(self.active_leave and self.active_leave.is_active),
            "leave": self.active_leave.model_dump(mode="json") if self.active_leave else None,
        }

    def _publish(self, frame: dict) -> None:
        self.outbox.put_nowait(frame)

    def _publish_state(self) -> None:
        self._publish({"type": "state", **self.state()})

    def _publish_slots(self) -> None:
        self._publish({"type": "slots", "slots": [v.to_dict() for v in self.slots.views()]})

    def _publish_tasks(self) -> None:
        self._publish({"type": "tasks", "tasks": [t.model_dump(mode="json") for t in self.tasks]})

    def _publish_notice(self, text: str) -> None:
        self._publish({"type": "notice", "text": text})
