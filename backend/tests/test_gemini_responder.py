"""Tests for the Gemini responder and reply classification."""

import time
from unittest.mock import MagicMock, patch

import pytest
from google.genai import errors

from sparsh.core.config import settings
from sparsh.services.llm.base import GatewayReply, ReplyError
from sparsh.services.llm.gemini import GeminiResponder
from sparsh.services.llm.signals import ReplyKind, classify_reply
from sparsh.services.messages import QUOTA_NOTICE_MARKER


def _api_error(code, status, message="boom"):
    return errors.APIError(code, {"error": {"code": code, "message": message, "status": status}})


@pytest.fixture
def fake_client():
    client = MagicMock()
    client.models.generate_content.return_value = MagicMock(
        text='{"reply": "Take a breath.", "mood": "Stressed", "crisis": false}'
    )
    return client


@pytest.fixture
def responder(fake_client):
    with (
        patch.object(settings, "gemini_api_key", "test-key"),
        patch("sparsh.services.llm.gemini.genai.Client", return_value=fake_client),
    ):
        yield GeminiResponder()


# --- classify_reply ---


def test_classify_structured_fields_win():
    assert classify_reply(GatewayReply(text="fine", error=ReplyError.AUTH)) is ReplyKind.AUTH_ERROR
    assert classify_reply(GatewayReply(text="fine", error=ReplyError.TRANSIENT)) is ReplyKind.DELIVERY_ERROR
    assert classify_reply(GatewayReply(text="fine", needs_fallback_consent=True)) is ReplyKind.NEEDS_CONSENT
    assert classify_reply(GatewayReply(text="fine")) is ReplyKind.OK


def test_classify_falls_back_to_text_markers():
    assert classify_reply(GatewayReply(text="System Error: upstream")) is ReplyKind.AUTH_ERROR
    assert classify_reply(GatewayReply(text="API key not valid")) is ReplyKind.AUTH_ERROR


# --- GeminiResponder ---


@pytest.mark.asyncio
async def test_send_parses_json_reply(responder, fake_client):
    reply = await responder.send([], "exams tomorrow")

    assert reply.text == "Take a breath."
    assert reply.detected_mood == "stressed"
    assert reply.is_crisis is False
    assert reply.error is None

    kwargs = fake_client.models.generate_content.call_args.kwargs
    assert kwargs["model"] == settings.primary_model
    assert kwargs["contents"][-1] == {"role": "user", "parts": [{"text": "exams tomorrow"}]}
    assert "university student" in kwargs["config"].system_instruction


@pytest.mark.asyncio
async def test_send_without_context_flag(responder, fake_client):
    await responder.send([], "hi", context_flag=False)
    kwargs = fake_client.models.generate_content.call_args.kwargs
    assert "university student" not in kwargs["config"].system_instruction


@pytest.mark.asyncio
async def test_send_plain_text_reply(responder, fake_client):
    fake_client.models.generate_content.return_value = MagicMock(text="  just words ")
    reply = await responder.send([], "hi")
    assert reply.text == "just words"
    assert reply.detected_mood is None


@pytest.mark.asyncio
async def test_force_fallback_uses_fallback_model(responder, fake_client):
    await responder.send([], "hi", force_fallback=True)
    assert fake_client.models.generate_content.call_args.kwargs["model"] == settings.fallback_model


@pytest.mark.asyncio
async def test_quota_asks_for_consent(responder, fake_client):
    fake_client.models.generate_content.side_effect = _api_error(429, "RESOURCE_EXHAUSTED")

    reply = await responder.send([], "hi")

    assert reply.needs_fallback_consent is True
    assert reply.text.startswith(QUOTA_NOTICE_MARKER)
    assert classify_reply(reply) is ReplyKind.NEEDS_CONSENT


@pytest.mark.asyncio
async def test_quota_on_fallback_is_delivery_error(responder, fake_client):
    fake_client.models.generate_content.side_effect = _api_error(429, "RESOURCE_EXHAUSTED")

    reply = await responder.send([], "hi", force_fallback=True)

    assert reply.needs_fallback_consent is False
    assert reply.error is ReplyError.TRANSIENT


@pytest.mark.asyncio
async def test_rejected_key_is_auth_error(responder, fake_client):
    fake_client.models.generate_content.side_effect = _api_error(400, "INVALID_ARGUMENT", "API key not valid.")

    reply = await responder.send([], "hi")

    assert reply.error is ReplyError.AUTH
    assert reply.text.startswith("System Error")


@pytest.mark.asyncio
async def test_server_error_is_transient(responder, fake_client):
    fake_client.models.generate_content.side_effect = _api_error(503, "UNAVAILABLE")
    reply = await responder.send([], "hi")
    assert reply.error is ReplyError.TRANSIENT


@pytest.mark.asyncio
async def test_timeout_is_transient(responder, fake_client):
    fake_client.models.generate_content.side_effect = lambda **kwargs: time.sleep(0.3)
    responder.timeout = 0.05

    reply = await responder.send([], "hi")

    assert reply.error is ReplyError.TRANSIENT


@pytest.mark.asyncio
async def test_missing_key_is_auth_error():
    with patch.object(settings, "gemini_api_key", ""):
        reply = await GeminiResponder().send([], "hi")
    assert reply.error is ReplyError.AUTH
    assert classify_reply(reply) is ReplyKind.AUTH_ERROR
