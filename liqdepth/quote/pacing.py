"""Process-wide minimum-interval gate for quote requests."""

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


class PacingGate:
    """Single last-request timestamp shared by every caller.

    Each `wait()` reserves the next free slot, at least `min_interval_s`
    after the previous one, and sleeps until it arrives. Reservation happens
    under a `threading.Lock` that is never held across an await, so one gate
    can serve any number of event loops and threads.
    """

    def __init__(
        self,
        min_interval_s: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.min_interval_s = min_interval_s
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self.last_request_at: float | None = None

    def reserve(self) -> tuple[float, float]:
        """Claim the next request slot.

        Returns:
            (slot time, seconds until the slot)
        """
        with self._lock:
            now = self._clock()
            slot = now
            if self.last_request_at is not None:
                slot = max(now, self.last_request_at + self.min_interval_s)
            self.last_request_at = slot
        return slot, slot - now

    async def wait(self) -> float:
        """Wait for the next slot and claim it.

        Returns:
            Seconds spent waiting
        """
        _, waited = self.reserve()
        if waited > 0:
            logger.debug("Pacing quote request", wait_s=round(waited, 4))
            await self._sleep(waited)
        return waited


_process_gate = PacingGate()


def process_gate(min_interval_s: float | None = None) -> PacingGate:
    """Return the gate shared by all clients in this process.

    Args:
        min_interval_s: Optional new minimum interval for the shared gate
    """
    if min_interval_s is not None:
        _process_gate.min_interval_s = min_interval_s
    return _process_gate
