"""Responder and intervention-agent factories."""

from sparsh.core.config import settings
from sparsh.services.llm.base import BaseInterventionAgent, BaseResponder
from sparsh.services.store import StoreAdapter


def get_responder() -> BaseResponder:
    """Returns the primary responder (Gemini, with its fallback model)."""
    from sparsh.services.llm.gemini import GeminiResponder
    return GeminiResponder()


def get_intervention_agent(store: StoreAdapter | None = None) -> BaseInterventionAgent | None:
    """Returns the background Guardian agent, or None when it is switched off."""
    if not settings.guardian_enabled:
        return None
    from sparsh.services.llm.guardian import GuardianAgent
    return GuardianAgent(store)
