"""Google Gemini responder with a consent-gated fallback model."""

import asyncio
import json
import logging

from google import genai
from google.genai import errors, types

from sparsh.core.config import settings
from sparsh.core.errors import AuthenticationError, QuotaExceeded, TransientDeliveryError
from sparsh.services.llm.base import BaseResponder, GatewayReply, ReplyError
from sparsh.services.messages import QUOTA_NOTICE_MARKER

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are SParsh, a warm and concise wellness companion.
Listen first, reflect what you hear, and offer one small, practical next step.
Never diagnose. If the user mentions self-harm, suicide or being in danger,
gently encourage them to reach out to a counselor or emergency services now.

Always answer with a JSON object:
{"reply": "<your message>", "mood": "<one of calm, happy, stressed, anxious, sad, angry, or null>", "crisis": <true|false>}"""

STUDENT_CONTEXT = """
The user is a university student. Academic workload, exams and deadlines are
common stressors. Campus counselors can be booked from the app."""

CONSENT_PROMPT = (
    f"{QUOTA_NOTICE_MARKER}. The primary model has used up its quota for now. "
    "Would you like to switch to the backup model, or wait for the quota to reset?"
)


def _translate_api_error(exc: errors.APIError) -> Exception:
    code = getattr(exc, "code", None)
    status = str(getattr(exc, "status", "") or "")
    message = str(exc)
    if code == 429 or "RESOURCE_EXHAUSTED" in status:
        return QuotaExceeded(message)
    if code in (401, 403) or "API key not valid" in message or status in ("UNAUTHENTICATED", "PERMISSION_DENIED"):
        return AuthenticationError(message)
    return TransientDeliveryError(message)


class GeminiResponder(BaseResponder):
    def __init__(self):
        self._client: genai.Client | None = None
        self.primary_model = settings.primary_model
        self.fallback_model = settings.fallback_model
        self.timeout = settings.responder_timeout_seconds

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            if not settings.gemini_api_key:
                raise AuthenticationError("API key not valid: SPARSH_GEMINI_API_KEY is not set")
            self._client = genai.Client(api_key=settings.gemini_api_key)
        return self._client

    async def _generate(self, model: str, contents: list[dict], context_flag: bool) -> str:
        config = types.GenerateContentConfig(
            system_instruction=SYSTEM_PROMPT + (STUDENT_CONTEXT if context_flag else ""),
            response_mime_type="application/json",
        )
        client = self.client
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    client.models.generate_content,
                    model=model,
                    contents=contents,
                    config=config,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransientDeliveryError(f"{model} did not answer within {self.timeout:.0f}s") from e
        except errors.APIError as e:
            raise _translate_api_error(e) from e
        except Exception as e:
            raise TransientDeliveryError(str(e)) from e
        return response.text or ""

    async def send(
        self,
        history: list[dict],
        new_text: str,
        context_flag: bool = True,
        force_fallback: bool = False,
    ) -> GatewayReply:
        contents = history + [{"role": "user", "parts": [{"text": new_text}]}]
        model = self.fallback_model if force_fallback else self.primary_model
        logger.info(f"Responder call: model={model} turns={len(contents)}")

        try:
            raw = await self._generate(model, contents, context_flag)
        except QuotaExceeded as e:
            if force_fallback:
                logger.warning(f"Fallback model quota exhausted: {e}")
                return GatewayReply(
                    text="System Error: the backup model is also out of quota. Please try again later.",
                    error=ReplyError.TRANSIENT,
                )
            logger.info("Primary model quota exhausted, asking for fallback consent")
            return GatewayReply(text=CONSENT_PROMPT, needs_fallback_consent=True)
        except AuthenticationError as e:
            logger.error(f"Responder authentication failed: {e}")
            return GatewayReply(text=f"System Error: {e}", error=ReplyError.AUTH)
        except TransientDeliveryError as e:
            logger.warning(f"Responder delivery failed: {e}")
            return GatewayReply(text=f"System Error: {e}", error=ReplyError.TRANSIENT)

        return self._parse(raw)

    @staticmethod
    def _parse(raw: str) -> GatewayReply:
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return GatewayReply(text=raw.strip())
        if not isinstance(data, dict):
            return GatewayReply(text=raw.strip())

        mood = data.get("mood")
        if not isinstance(mood, str) or mood.lower() in ("", "null", "none"):
            mood = None
        return GatewayReply(
            text=str(data.get("reply") or "").strip() or raw.strip(),
            detected_mood=mood.lower() if mood else None,
            is_crisis=bool(data.get("crisis")),
        )
