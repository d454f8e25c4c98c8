"""REST API for counselor slots: publish, request, cancel, confirm."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from sparsh.models.wellness import SlotStatus
from sparsh.services.slots import slot_view
from sparsh.services.store import StoreAdapter, get_store

router = APIRouter()
logger = logging.getLogger(__name__)


class SlotCreate(BaseModel):
    counselor_id: str
    counselor_name: str
    date: str
    time: str


class SlotRequest(BaseModel):
    student_id: str
    student_name: str


class SlotCancel(BaseModel):
    student_id: str


@router.get("/")
async def list_slots(viewer_id: str | None = None, store: StoreAdapter = Depends(get_store)):
    slots = await store.get_slots()
    if viewer_id is None:
        return [s.model_dump() for s in slots]
    return [slot_view(s, viewer_id).to_dict() for s in slots]


@router.post("/", status_code=201)
async def create_slot(body: SlotCreate, store: StoreAdapter = Depends(get_store)):
    slot = await store.add_slot(body.counselor_id, body.counselor_name, body.date, body.time)
    logger.info(f"Slot {slot.id} published by {body.counselor_id}")
    return slot.model_dump()


@router.post("/{slot_id}/request")
async def request_slot(slot_id: str, body: SlotRequest, store: StoreAdapter = Depends(get_store)):
    if not await store.request_slot(slot_id, body.student_id, body.student_name):
        raise HTTPException(status_code=409, detail="This slot is no longer available.")
    return {"status": SlotStatus.REQUESTED.value}


@router.post("/{slot_id}/cancel")
async def cancel_slot(slot_id: str, body: SlotCancel, store: StoreAdapter = Depends(get_store)):
    if not await store.update_slot_status(slot_id, SlotStatus.OPEN, acting_student_id=body.student_id):
        raise HTTPException(status_code=409, detail="This request can no longer be cancelled.")
    return {"status": SlotStatus.OPEN.value}


@router.post("/{slot_id}/confirm")
async def confirm_slot(slot_id: str, store: StoreAdapter = Depends(get_store)):
    if not await store.update_slot_status(slot_id, SlotStatus.CONFIRMED):
        raise HTTPException(status_code=409, detail="Only a requested slot can be confirmed.")
    logger.info(f"Slot {slot_id} confirmed")
    return {"status": SlotStatus.CONFIRMED.value}
