"""REST API for a student's chat history (read-only, the log is append-only)."""

import logging

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from sparsh.core.database import get_session
from sparsh.models.conversation import ChatMessage
from sparsh.services.messages import Message

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/{user_id}")
async def get_conversation(user_id: str, session: Session = Depends(get_session)):
    rows = session.exec(
        select(ChatMessage)
        .where(ChatMessage.user_id == user_id)
        .order_by(ChatMessage.seq)  # type: ignore
    ).all()
    logger.debug(f"Loaded {len(rows)} messages for {user_id}")
    return {
        "user_id": user_id,
        "messages": [Message.from_record(row).to_dict() for row in rows],
    }
