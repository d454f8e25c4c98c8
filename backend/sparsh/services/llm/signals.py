"""Reply classification.

Providers are expected to fill GatewayReply.error and
needs_fallback_consent. Matching markers in the reply text is only a
degraded fallback for providers that report failures as plain text; it
breaks as soon as the wording changes.
"""

from enum import Enum

from sparsh.services.llm.base import GatewayReply, ReplyError

AUTH_FAILURE_MARKERS = ("API key not valid", "System Error")


class ReplyKind(str, Enum):
    OK = "ok"
    AUTH_ERROR = "auth_error"
    DELIVERY_ERROR = "delivery_error"
    NEEDS_CONSENT = "needs_consent"


def classify_reply(reply: GatewayReply) -> ReplyKind:
    if reply.error is ReplyError.AUTH:
        return ReplyKind.AUTH_ERROR
    if reply.error is ReplyError.TRANSIENT:
        return ReplyKind.DELIVERY_ERROR
    if reply.needs_fallback_consent:
        return ReplyKind.NEEDS_CONSENT
    if any(marker in reply.text for marker in AUTH_FAILURE_MARKERS):
        return ReplyKind.AUTH_ERROR
    return ReplyKind.OK
