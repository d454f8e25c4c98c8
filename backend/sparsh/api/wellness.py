"""REST API for wellness tasks, leave records and the journal."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from sparsh.models.wellness import JournalEntry
from sparsh.services.store import StoreAdapter, get_store

router = APIRouter()
logger = logging.getLogger(__name__)


class TaskCreate(BaseModel):
    user_key: str
    title: str
    assigned_by: str


class LeaveCreate(BaseModel):
    user_key: str
    issued_by: str
    expiry_date: str


class JournalCreate(BaseModel):
    user_id: str
    vibe: str
    text: str


@router.get("/tasks")
async def list_tasks(user_key: str, store: StoreAdapter = Depends(get_store)):
    return [t.model_dump(mode="json") for t in await store.get_tasks(user_key)]


@router.post("/tasks", status_code=201)
async def create_task(body: TaskCreate, store: StoreAdapter = Depends(get_store)):
    task = await store.assign_task(body.user_key, body.title, body.assigned_by)
    return task.model_dump(mode="json")


@router.post("/tasks/{task_id}/toggle")
async def toggle_task(task_id: str, user_key: str, store: StoreAdapter = Depends(get_store)):
    if not await store.toggle_task_completion(user_key, task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    return {"status": "toggled"}


@router.get("/leave")
async def get_leave(user_key: str, store: StoreAdapter = Depends(get_store)):
    leave = await store.get_active_leave(user_key)
    return {"on_leave": leave is not None, "leave": leave.model_dump(mode="json") if leave else None}


@router.post("/leave", status_code=201)
async def grant_leave(body: LeaveCreate, store: StoreAdapter = Depends(get_store)):
    leave = await store.grant_leave(body.user_key, body.issued_by, body.expiry_date)
    logger.info(f"Leave granted to {body.user_key} until {body.expiry_date}")
    return leave.model_dump(mode="json")


@router.get("/journal")
async def list_journal(user_id: str, store: StoreAdapter = Depends(get_store)):
    return [e.model_dump() for e in await store.get_journal(user_id)]


@router.post("/journal", status_code=201)
async def create_journal_entry(body: JournalCreate, store: StoreAdapter = Depends(get_store)):
    if not body.text.strip() or not body.vibe.strip():
        raise HTTPException(status_code=422, detail="Journal needs text and a vibe")
    entry = JournalEntry(
        user_id=body.user_id,
        date=datetime.now(timezone.utc).isoformat(),
        vibe=body.vibe.strip().lower(),
        text=body.text,
    )
    await store.save_journal(body.user_id, entry)
    return entry.model_dump()
