"""Tests for the dashboard WebSocket endpoint."""

import json

from sqlmodel import Session, select

from tests.conftest import test_engine
from sparsh.models.conversation import ChatMessage
from sparsh.models.wellness import AppointmentSlot, WellnessTask
from sparsh.services.llm.base import GatewayReply
from sparsh.services.slots import REQUESTED_NOTICE

WS_URL = "/api/chat/ws?user_id=stu1&user_key=jane.doe@uni.edu"


def _receive_until(ws, predicate):
    """Read frames until one matches, returning it."""
    while True:
        frame = ws.receive_json()
        if predicate(frame):
            return frame


def _event(name):
    return lambda f: f["type"] == "event" and f["event"] == name


def test_websocket_connect_sends_initial_frames(client):
    with client.websocket_connect(WS_URL) as ws:
        state = ws.receive_json()
        assert state["type"] == "state"
        assert state["fallback_state"] == "normal"
        assert state["sync_status"] == "idle"
        assert state["on_leave"] is False
        assert ws.receive_json() == {"type": "slots", "slots": []}
        assert ws.receive_json() == {"type": "tasks", "tasks": []}


def test_websocket_message_settles(client):
    with client.websocket_connect(WS_URL) as ws:
        ws.send_text(json.dumps({"type": "message", "content": "hello"}))
        frame = _receive_until(ws, _event("settled"))

    assert [m["role"] for m in frame["messages"]] == ["user", "assistant"]
    assert frame["messages"][1]["text"] == "echo: hello"
    assert frame["actions"] == []


def test_websocket_plain_text_is_a_message(client):
    with client.websocket_connect(WS_URL) as ws:
        ws.send_text("just text")
        frame = _receive_until(ws, _event("settled"))
    assert frame["messages"][0]["text"] == "just text"


def test_websocket_messages_persisted(client):
    with client.websocket_connect(WS_URL) as ws:
        ws.send_text("save me")
        _receive_until(ws, _event("settled"))

    with Session(test_engine) as session:
        messages = session.exec(
            select(ChatMessage).where(ChatMessage.user_id == "stu1").order_by(ChatMessage.seq)
        ).all()
        assert [(m.role, m.content) for m in messages] == [
            ("user", "save me"),
            ("assistant", "echo: save me"),
        ]


def test_websocket_history_reloaded_on_reconnect(client, responder):
    with client.websocket_connect(WS_URL) as ws:
        ws.send_text("first")
        _receive_until(ws, _event("settled"))

    with client.websocket_connect(WS_URL) as ws:
        ws.send_text("second")
        frame = _receive_until(ws, _event("settled"))

    assert [m["text"] for m in frame["messages"]] == ["first", "echo: first", "second", "echo: second"]
    assert responder.calls[1]["history"] == [
        {"role": "user", "parts": [{"text": "first"}]},
        {"role": "model", "parts": [{"text": "echo: first"}]},
    ]


def test_websocket_fallback_consent_round_trip(client, responder):
    responder.replies = [
        GatewayReply(text="Token Limit Reached. Switch?", needs_fallback_consent=True),
        GatewayReply(text="backup says hi"),
    ]
    with client.websocket_connect(WS_URL) as ws:
        ws.send_text("hi")
        offer = _receive_until(ws, _event("awaiting-fallback-consent"))
        assert offer["actions"] == ["confirm-fallback", "dismiss"]
        assert offer["messages"][-1]["quota_notice"] is True

        ws.send_text(json.dumps({"type": "confirm_fallback"}))
        frame = _receive_until(ws, _event("settled"))
        state = _receive_until(ws, lambda f: f["type"] == "state")

    assert [m["text"] for m in frame["messages"]] == ["hi", "backup says hi"]
    assert state["fallback_state"] == "fallback-active"
    assert responder.calls[1]["force_fallback"] is True


def test_websocket_unknown_frame_returns_error(client):
    with client.websocket_connect(WS_URL) as ws:
        ws.send_text(json.dumps({"type": "teleport"}))
        frame = _receive_until(ws, lambda f: f["type"] == "error")
    assert "teleport" in frame["detail"]


def test_websocket_book_slot(client):
    with Session(test_engine) as session:
        session.add(AppointmentSlot(
            id="slot1", counselor_id="counselor_dimple", counselor_name="Dr. Dimple",
            date="2026-10-20", time="10:00",
        ))
        session.commit()

    with client.websocket_connect(WS_URL) as ws:
        ws.send_text(json.dumps({"type": "book_slot", "slot_id": "slot1"}))
        slots = _receive_until(ws, lambda f: f["type"] == "slots" and f["slots"][0]["state"] != "selectable-open")
        notice = ws.receive_json()

    assert slots["slots"][0]["state"] == "pending-mine"
    assert notice == {"type": "notice", "text": REQUESTED_NOTICE}

    with Session(test_engine) as session:
        slot = session.get(AppointmentSlot, "slot1")
        assert slot.status == "requested"
        assert slot.booked_by_student_id == "stu1"
        assert slot.booked_by_student_name == "jane doe"


def test_websocket_toggle_task(client):
    with Session(test_engine) as session:
        session.add(WellnessTask(id="t1", user_key="jane.doe@uni.edu", title="Walk", assigned_by="Guardian"))
        session.commit()

    with client.websocket_connect(WS_URL) as ws:
        _receive_until(ws, lambda f: f["type"] == "tasks" and f["tasks"])
        ws.send_text(json.dumps({"type": "toggle_task", "task_id": "t1"}))
        frame = _receive_until(ws, lambda f: f["type"] == "tasks")
        assert frame["tasks"][0]["is_completed"] is True
        # A follow-up frame proves the store write finished
        ws.send_text(json.dumps({"type": "teleport"}))
        _receive_until(ws, lambda f: f["type"] == "error")

    with Session(test_engine) as session:
        assert session.get(WellnessTask, "t1").is_completed is True


def test_websocket_journal_needs_vibe(client):
    with client.websocket_connect(WS_URL) as ws:
        ws.send_text(json.dumps({"type": "save_journal", "content": "dear diary"}))
        error = _receive_until(ws, lambda f: f["type"] in ("error", "notice"))
        assert error["type"] == "error"

        ws.send_text(json.dumps({"type": "set_vibe", "vibe": "Calm"}))
        ws.send_text(json.dumps({"type": "save_journal", "content": "dear diary"}))
        notice = _receive_until(ws, lambda f: f["type"] == "notice")
    assert notice["text"] == "Journal Entry Saved Successfully."
