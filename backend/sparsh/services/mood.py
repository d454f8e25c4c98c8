"""Ambient mood ("vibe") and avatar state for one dashboard session.

Who writes what:
- the orchestrator sets the vibe from a detected mood, and moves the avatar
  listening -> speaking -> idle around each responder call;
- the student sets the vibe from the journal picker.
The vibe never resets by itself; it lives as long as the session.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class AvatarState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    SPEAKING = "speaking"


class MoodContext:
    def __init__(
        self,
        idle_delay: float = 3.0,
        on_change: Optional[Callable[["MoodContext"], None]] = None,
    ) -> None:
        self.vibe: Optional[str] = None
        self.avatar: AvatarState = AvatarState.IDLE
        self.idle_delay = idle_delay
        self._on_change = on_change
        self._idle_handle: asyncio.TimerHandle | None = None

    def set_vibe(self, vibe: str, source: str) -> None:
        vibe = vibe.strip().lower()
        if not vibe:
            return
        logger.debug(f"Vibe set to {vibe} by {source}")
        self.vibe = vibe
        self._notify()

    def set_avatar(self, state: AvatarState) -> None:
        self._cancel_idle()
        self.avatar = state
        self._notify()

    def settle_avatar(self) -> None:
        """Return the avatar to idle after the configured delay."""
        self._cancel_idle()
        if self.idle_delay <= 0:
            self.set_avatar(AvatarState.IDLE)
            return
        loop = asyncio.get_running_loop()
        self._idle_handle = loop.call_later(self.idle_delay, self._go_idle)

    def close(self) -> None:
        self._cancel_idle()

    def _go_idle(self) -> None:
        self._idle_handle = None
        self.avatar = AvatarState.IDLE
        self._notify()

    def _cancel_idle(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def _notify(self) -> None:
        if self._on_change:
            self._on_change(self)

    def to_dict(self) -> dict:
        return {"vibe": self.vibe, "avatar": self.avatar.value}
