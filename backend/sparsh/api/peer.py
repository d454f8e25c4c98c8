"""REST API for the student <-> counselor thread."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from sparsh.models.wellness import PeerMessage
from sparsh.services.store import StoreAdapter, get_store

router = APIRouter()


class PeerMessageCreate(BaseModel):
    sender_id: str
    receiver_id: str
    text: str


@router.get("/thread")
async def get_thread(a: str, b: str, store: StoreAdapter = Depends(get_store)):
    return [m.model_dump(mode="json") for m in await store.get_p2p_thread(a, b)]


@router.post("/messages", status_code=201)
async def send_message(body: PeerMessageCreate, store: StoreAdapter = Depends(get_store)):
    if not body.text.strip():
        raise HTTPException(status_code=422, detail="Message is empty")
    message = PeerMessage(sender_id=body.sender_id, receiver_id=body.receiver_id, text=body.text)
    await store.send_p2p_message(message)
    return message.model_dump(mode="json")
