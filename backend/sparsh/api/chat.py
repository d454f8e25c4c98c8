import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from sparsh.core.config import settings
from sparsh.services.dashboard import DashboardSession
from sparsh.services.llm import get_intervention_agent, get_responder
from sparsh.services.store import StoreAdapter

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws")
async def chat_websocket(websocket: WebSocket, user_id: str, user_key: str | None = None):
    await websocket.accept()
    store = StoreAdapter()
    session = DashboardSession(
        user_id=user_id,
        user_key=user_key or user_id,
        store=store,
        responder=get_responder(),
        agent=get_intervention_agent(store),
        counselor_id=settings.counselor_id,
        sync_interval=settings.sync_interval_seconds,
        avatar_idle_delay=settings.avatar_idle_delay_seconds,
        background_drain=settings.background_drain_seconds,
    )
    sender = asyncio.create_task(_pump(websocket, session.outbox))

    try:
        await session.open()
        while True:
            raw = await websocket.receive_text()

            # Plain text is shorthand for a chat message
            try:
                frame = json.loads(raw)
                if not isinstance(frame, dict):
                    raise TypeError
            except (json.JSONDecodeError, TypeError):
                frame = {"type": "message", "content": raw}

            try:
                await _dispatch(session, frame)
            except Exception as e:
                logger.error(f"Frame {frame.get('type')} failed for {user_id}: {e}", exc_info=True)
                session.outbox.put_nowait({"type": "error", "detail": str(e)})

    except WebSocketDisconnect:
        logger.debug(f"Dashboard socket closed for {user_id}")
    finally:
        await session.close()
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)


async def _pump(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    while True:
        frame = await outbox.get()
        await websocket.send_json(frame)


async def _dispatch(session: DashboardSession, frame: dict) -> None:
    kind = frame.get("type", "message")

    if kind == "message":
        await session.send_message(frame.get("content", ""))
    elif kind == "confirm_fallback":
        await session.confirm_fallback()
    elif kind == "dismiss_fallback":
        session.dismiss_fallback()
    elif kind == "open_peer":
        await session.set_peer_open(True)
    elif kind == "close_peer":
        await session.set_peer_open(False)
    elif kind == "peer_message":
        await session.send_peer_message(frame.get("content", ""))
    elif kind == "book_slot":
        await session.book_slot(frame["slot_id"])
    elif kind == "cancel_slot":
        await session.cancel_slot(frame["slot_id"])
    elif kind == "toggle_task":
        await session.toggle_task(frame["task_id"])
    elif kind == "set_vibe":
        session.set_vibe(frame.get("vibe", ""))
    elif kind == "set_tab":
        session.set_tab(frame["tab"])
    elif kind == "save_journal":
        if not await session.save_journal(frame.get("content", "")):
            session.outbox.put_nowait({"type": "error", "detail": "Journal needs text and a vibe"})
    else:
        raise ValueError(f"Unknown frame type: {kind}")
