"""Store adapter - the single source of truth for chat history, tasks,
leave, slots, journal entries and the peer thread.

Every method is a coroutine so callers treat persistence as a suspension
point; the SQLite work itself is short and runs inline, as the API routes do.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, or_, update
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from sparsh.core import database
from sparsh.models.conversation import ChatMessage
from sparsh.models.wellness import (
    AppointmentSlot,
    JournalEntry,
    PeerMessage,
    SlotStatus,
    WellnessLeave,
    WellnessTask,
)
from sparsh.services.messages import Message

logger = logging.getLogger(__name__)


class StoreAdapter:
    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine

    @property
    def engine(self) -> Engine:
        # Resolved late so a patched database.engine is honoured
        return self._engine or database.engine

    # --- Chat history ---

    async def get_chat_history(self, user_id: str) -> list[Message]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ChatMessage)
                .where(ChatMessage.user_id == user_id)
                .order_by(ChatMessage.seq)  # type: ignore
            ).all()
            return [Message.from_record(row) for row in rows]

    async def save_chat_message(self, user_id: str, message: Message) -> None:
        with Session(self.engine) as session:
            session.add(message.to_record(user_id))
            session.commit()

    async def delete_chat_message(self, user_id: str, message_id: str) -> bool:
        with Session(self.engine) as session:
            result = session.execute(
                delete(ChatMessage).where(
                    ChatMessage.user_id == user_id,
                    ChatMessage.message_id == message_id,
                )
            )
            session.commit()
            return result.rowcount > 0

    # --- Tasks ---

    async def get_tasks(self, user_key: str) -> list[WellnessTask]:
        with Session(self.engine) as session:
            return list(session.exec(
                select(WellnessTask)
                .where(WellnessTask.user_key == user_key)
                .order_by(WellnessTask.created_at)  # type: ignore
            ).all())

    async def assign_task(self, user_key: str, title: str, assigned_by: str) -> WellnessTask:
        with Session(self.engine) as session:
            task = WellnessTask(user_key=user_key, title=title, assigned_by=assigned_by)
            session.add(task)
            session.commit()
            session.refresh(task)
            logger.debug(f"Assigned task '{title}' to {user_key}")
            return task

    async def toggle_task_completion(self, user_key: str, task_id: str) -> bool:
        with Session(self.engine) as session:
            task = session.get(WellnessTask, task_id)
            if not task or task.user_key != user_key:
                return False
            task.is_completed = not task.is_completed
            session.add(task)
            session.commit()
            return True

    # --- Leave ---

    async def get_active_leave(self, user_key: str) -> Optional[WellnessLeave]:
        with Session(self.engine) as session:
            return session.exec(
                select(WellnessLeave)
                .where(WellnessLeave.user_key == user_key, WellnessLeave.is_active == True)  # noqa: E712
                .order_by(WellnessLeave.created_at.desc())  # type: ignore
            ).first()

    async def grant_leave(self, user_key: str, issued_by: str, expiry_date: str) -> WellnessLeave:
        with Session(self.engine) as session:
            leave = WellnessLeave(user_key=user_key, issued_by=issued_by, expiry_date=expiry_date)
            session.add(leave)
            session.commit()
            session.refresh(leave)
            return leave

    # --- Slots ---

    async def get_slots(self) -> list[AppointmentSlot]:
        with Session(self.engine) as session:
            return list(session.exec(
                select(AppointmentSlot).order_by(AppointmentSlot.date, AppointmentSlot.time)  # type: ignore
            ).all())

    async def add_slot(
        self, counselor_id: str, counselor_name: str, date: str, time: str
    ) -> AppointmentSlot:
        with Session(self.engine) as session:
            slot = AppointmentSlot(
                counselor_id=counselor_id,
                counselor_name=counselor_name,
                date=date,
                time=time,
            )
            session.add(slot)
            session.commit()
            session.refresh(slot)
            return slot

    async def request_slot(self, slot_id: str, student_id: str, student_name: str) -> bool:
        """Claim an open slot. Returns False when somebody else got there first.

        The status check and the claim are one conditional UPDATE, so of two
        racing requests exactly one matches the row.
        """
        with Session(self.engine) as session:
            result = session.execute(
                update(AppointmentSlot)
                .where(
                    AppointmentSlot.id == slot_id,
                    AppointmentSlot.status == SlotStatus.OPEN.value,
                )
                .values(
                    status=SlotStatus.REQUESTED.value,
                    booked_by_student_id=student_id,
                    booked_by_student_name=student_name,
                )
            )
            session.commit()
            accepted = result.rowcount == 1
        logger.debug(f"Slot {slot_id} request by {student_id}: {'accepted' if accepted else 'rejected'}")
        return accepted

    async def update_slot_status(
        self,
        slot_id: str,
        status: SlotStatus,
        acting_student_id: str | None = None,
    ) -> bool:
        """Move a slot to a new status.

        Reopening clears the binding. With acting_student_id set, only a
        requested slot held by that student can be reopened. Confirming
        needs a requested slot.
        """
        status = SlotStatus(status)
        stmt = update(AppointmentSlot).where(AppointmentSlot.id == slot_id)
        if status is SlotStatus.OPEN:
            if acting_student_id is not None:
                stmt = stmt.where(
                    AppointmentSlot.status == SlotStatus.REQUESTED.value,
                    AppointmentSlot.booked_by_student_id == acting_student_id,
                )
            stmt = stmt.values(
                status=SlotStatus.OPEN.value,
                booked_by_student_id=None,
                booked_by_student_name=None,
            )
        elif status is SlotStatus.CONFIRMED:
            stmt = stmt.where(AppointmentSlot.status == SlotStatus.REQUESTED.value).values(
                status=SlotStatus.CONFIRMED.value
            )
        else:
            raise ValueError("Use request_slot to claim a slot")

        with Session(self.engine) as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1

    # --- Journal ---

    async def save_journal(self, user_id: str, entry: JournalEntry) -> None:
        with Session(self.engine) as session:
            entry.user_id = user_id
            session.add(entry)
            session.commit()
            session.refresh(entry)

    async def get_journal(self, user_id: str) -> list[JournalEntry]:
        with Session(self.engine) as session:
            return list(session.exec(
                select(JournalEntry)
                .where(JournalEntry.user_id == user_id)
                .order_by(JournalEntry.date.desc())  # type: ignore
            ).all())

    # --- Peer thread ---

    async def get_p2p_thread(self, a: str, b: str) -> list[PeerMessage]:
        with Session(self.engine) as session:
            return list(session.exec(
                select(PeerMessage)
                .where(
                    or_(
                        (PeerMessage.sender_id == a) & (PeerMessage.receiver_id == b),
                        (PeerMessage.sender_id == b) & (PeerMessage.receiver_id == a),
                    )
                )
                .order_by(PeerMessage.seq)  # type: ignore
            ).all())

    async def send_p2p_message(self, message: PeerMessage) -> None:
        with Session(self.engine) as session:
            if message.timestamp is None:
                message.timestamp = datetime.now(timezone.utc)
            session.add(message)
            session.commit()
            session.refresh(message)


def get_store() -> StoreAdapter:
    """FastAPI dependency."""
    return StoreAdapter()
