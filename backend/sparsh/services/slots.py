"""Slot reservation - booking and cancelling counselor slots against the store.

The store decides who wins a slot. The coordinator keeps a cached list for
display, may paint an optimistic hint on it, and always re-reads the full
list after any mutation attempt, successful or not.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sparsh.models.wellness import AppointmentSlot, SlotStatus
from sparsh.services.store import StoreAdapter

logger = logging.getLogger(__name__)

REQUESTED_NOTICE = "Session Requested. Waiting for Counselor Confirmation."
UNAVAILABLE_NOTICE = "This slot is no longer available."
CANCELLED_NOTICE = "Session request cancelled."
CANCEL_REFUSED_NOTICE = "This request can no longer be cancelled."


class SlotDisplayState(str, Enum):
    SELECTABLE_OPEN = "selectable-open"
    CONFIRMED_MINE = "confirmed-mine"
    CONFIRMED_OTHER = "confirmed-other"
    PENDING_MINE = "pending-mine"
    PENDING_OTHER = "pending-other"


_DISPLAY_STATES: dict[tuple[SlotStatus, bool], SlotDisplayState] = {
    (SlotStatus.OPEN, False): SlotDisplayState.SELECTABLE_OPEN,
    (SlotStatus.OPEN, True): SlotDisplayState.SELECTABLE_OPEN,
    (SlotStatus.CONFIRMED, True): SlotDisplayState.CONFIRMED_MINE,
    (SlotStatus.CONFIRMED, False): SlotDisplayState.CONFIRMED_OTHER,
    (SlotStatus.REQUESTED, True): SlotDisplayState.PENDING_MINE,
    (SlotStatus.REQUESTED, False): SlotDisplayState.PENDING_OTHER,
}

# label, status caption, interactive
_PRESENTATION: dict[SlotDisplayState, tuple[str, str, bool]] = {
    SlotDisplayState.SELECTABLE_OPEN: ("Select", "", True),
    SlotDisplayState.CONFIRMED_MINE: ("Confirmed", "Slot Confirmed", False),
    SlotDisplayState.CONFIRMED_OTHER: ("Taken", "", False),
    SlotDisplayState.PENDING_MINE: ("Cancel Req", "Waiting Approval", True),
    SlotDisplayState.PENDING_OTHER: ("Pending", "", False),
}


def derive_display_state(status: SlotStatus | str, is_mine: bool) -> SlotDisplayState:
    return _DISPLAY_STATES[(SlotStatus(status), bool(is_mine))]


@dataclass(frozen=True)
class SlotView:
    slot_id: str
    counselor_name: str
    date: str
    time: str
    state: SlotDisplayState
    label: str
    caption: str
    interactive: bool

    def to_dict(self) -> dict:
        return {
            "id": self.slot_id,
            "counselor_name": self.counselor_name,
            "date": self.date,
            "time": self.time,
            "state": self.state.value,
            "label": self.label,
            "caption": self.caption,
            "interactive": self.interactive,
        }


def slot_view(slot: AppointmentSlot, viewer_id: str) -> SlotView:
    is_mine = slot.booked_by_student_id is not None and slot.booked_by_student_id == viewer_id
    state = derive_display_state(slot.status, is_mine)
    label, caption, interactive = _PRESENTATION[state]
    return SlotView(
        slot_id=slot.id,
        counselor_name=slot.counselor_name,
        date=slot.date,
        time=slot.time,
        state=state,
        label=label,
        caption=caption,
        interactive=interactive,
    )


def display_name_from_email(email: str) -> str:
    """'jane.doe@uni.edu' -> 'jane doe' (only the first dot becomes a space)."""
    return email.split("@")[0].replace(".", " ", 1)


@dataclass(frozen=True)
class BookingOutcome:
    success: bool
    notice: str


class SlotReservationCoordinator:
    def __init__(self, store: StoreAdapter, student_id: str, student_name: str) -> None:
        self.store = store
        self.student_id = student_id
        self.student_name = student_name
        self._slots: list[AppointmentSlot] = []

    @property
    def slots(self) -> tuple[AppointmentSlot, ...]:
        return tuple(self._slots)

    def views(self) -> list[SlotView]:
        return [slot_view(s, self.student_id) for s in self._slots]

    def cached(self, slot_id: str) -> Optional[AppointmentSlot]:
        return next((s for s in self._slots if s.id == slot_id), None)

    async def refresh(self) -> list[AppointmentSlot]:
        self._slots = await self.store.get_slots()
        return self._slots

    async def request(self, slot_id: str) -> BookingOutcome:
        cached = self.cached(slot_id)
        if cached is None:
            # e.g. a slot suggested by the Guardian before the first poll
            await self.refresh()
            cached = self.cached(slot_id)
        if cached is None or cached.status != SlotStatus.OPEN.value:
            logger.debug(f"Slot {slot_id} not open in cached view, not requesting")
            await self.refresh()
            return BookingOutcome(success=False, notice=UNAVAILABLE_NOTICE)

        self._apply_hint(cached)
        try:
            accepted = await self.store.request_slot(slot_id, self.student_id, self.student_name)
        finally:
            await self.refresh()

        if not accepted:
            logger.info(f"Slot {slot_id} lost to another request")
            return BookingOutcome(success=False, notice=UNAVAILABLE_NOTICE)
        return BookingOutcome(success=True, notice=REQUESTED_NOTICE)

    async def cancel(self, slot_id: str) -> BookingOutcome:
        try:
            accepted = await self.store.update_slot_status(
                slot_id, SlotStatus.OPEN, acting_student_id=self.student_id
            )
        finally:
            await self.refresh()
        if not accepted:
            return BookingOutcome(success=False, notice=CANCEL_REFUSED_NOTICE)
        return BookingOutcome(success=True, notice=CANCELLED_NOTICE)

    def _apply_hint(self, cached: AppointmentSlot) -> None:
        hinted = AppointmentSlot(
            id=cached.id,
            counselor_id=cached.counselor_id,
            counselor_name=cached.counselor_name,
            date=cached.date,
            time=cached.time,
            status=SlotStatus.REQUESTED.value,
            booked_by_student_id=self.student_id,
            booked_by_student_name=self.student_name,
        )
        self._slots = [hinted if s.id == cached.id else s for s in self._slots]
