"""Background poller that keeps slots and the counselor thread fresh."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Refresh = Callable[[], Awaitable[object]]


@dataclass(frozen=True)
class PollerConfig:
    user_id: str
    counselor_id: str
    peer_open: bool = False


class SyncPoller:
    """Fires a refresh every `interval` seconds until stopped.

    Slots refresh on every tick; the peer thread only while the peer chat
    is open. Ticks never wait for each other. If a refresh of the same kind
    is still running when the next tick fires, the older one is cancelled
    so only the latest result is ever applied.

    The configuration is fixed for the poller's lifetime: when it changes,
    stop this poller and start a new one.
    """

    def __init__(
        self,
        config: PollerConfig,
        refresh_slots: Refresh,
        refresh_peer: Refresh,
        interval: float = 5.0,
    ) -> None:
        self.config = config
        self.interval = interval
        self._refreshers: dict[str, Refresh] = {"slots": refresh_slots, "peer": refresh_peer}
        self._loop_task: asyncio.Task | None = None
        self._in_flight: dict[str, asyncio.Task] = {}
        self.tick_count = 0

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._run())
        logger.debug(f"Sync poller started for {self.config.user_id} (peer_open={self.config.peer_open})")

    async def stop(self) -> None:
        tasks = list(self._in_flight.values())
        if self._loop_task is not None:
            tasks.append(self._loop_task)
        self._loop_task = None
        self._in_flight.clear()
        for task in tasks:
            task.cancel()
        # Wait so nothing can land after stop() returns
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug(f"Sync poller stopped for {self.config.user_id}")

    async def __aenter__(self) -> "SyncPoller":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.tick()

    def tick(self) -> None:
        self.tick_count += 1
        self._launch("slots")
        if self.config.peer_open:
            self._launch("peer")

    def _launch(self, kind: str) -> None:
        previous = self._in_flight.get(kind)
        if previous is not None and not previous.done():
            logger.debug(f"Superseding pending {kind} refresh")
            previous.cancel()
        self._in_flight[kind] = asyncio.create_task(self._refresh(kind))

    async def _refresh(self, kind: str) -> None:
        try:
            await self._refreshers[kind]()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Sync {kind} refresh failed: {e}")
