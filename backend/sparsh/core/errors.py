"""Failure taxonomy for the responder and the intervention agent.

None of these escape to the presentation layer: each is caught at the
boundary where it occurs and turned into a reply, an event or a log line.
"""


class TransientDeliveryError(Exception):
    """The responder timed out or failed in a way a manual resend may fix."""


class AuthenticationError(Exception):
    """The responder credential or configuration was rejected."""


class QuotaExceeded(Exception):
    """The primary model's quota is exhausted; the fallback model needs consent."""


class AgentDispatchFailure(Exception):
    """The intervention agent produced no usable result."""
