"""Per-calculation probing state."""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from ..core.errors import AmountError, QuoteError
from ..core.types import (
    DepthPoint,
    ErrorKind,
    ProbeDirection,
    ProbeError,
    TokenPair,
    TokenRef,
)

logger = structlog.get_logger(__name__)


class Deadline:
    """Time budget plus an optional cancellation event."""

    def __init__(
        self,
        budget_s: float | None,
        cancel_event: asyncio.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.budget_s = budget_s
        self.cancel_event = cancel_event
        self._clock = clock
        self.started_at = clock()

    def elapsed(self) -> float:
        return self._clock() - self.started_at

    def remaining(self) -> float:
        if self.budget_s is None:
            return float("inf")
        return self.budget_s - self.elapsed()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def expired(self) -> bool:
        if self.cancelled:
            return True
        return self.budget_s is not None and self.elapsed() > self.budget_s


@dataclass
class ProbeSession:
    """Mutable state owned by a single depth calculation."""

    pair: TokenPair
    direction: ProbeDirection
    deadline: Deadline
    match_tolerance_pct: float = 0.5
    baseline_price: float | None = None
    points: list[DepthPoint] = field(default_factory=list)
    errors: list[ProbeError] = field(default_factory=list)
    log: list[str] = field(default_factory=list)
    truncated: bool = False

    @property
    def spend_token(self) -> TokenRef:
        return self.pair.output if self.direction is ProbeDirection.BUY else self.pair.input

    @property
    def receive_token(self) -> TokenRef:
        return self.pair.input if self.direction is ProbeDirection.BUY else self.pair.output

    def note(self, message: str) -> None:
        self.log.append(message)
        logger.info(message, direction=self.direction.value)

    def stop_requested(self) -> bool:
        """True once the budget is spent or the caller cancelled."""
        if not self.deadline.expired():
            return False
        if not self.truncated:
            self.truncated = True
            reason = "cancelled" if self.deadline.cancelled else "time budget exhausted"
            self.note(
                f"Stopping early ({reason}) after {self.deadline.elapsed():.1f}s "
                f"with {len(self.points)} points"
            )
        return True

    def find_point(self, usd: float) -> DepthPoint | None:
        tolerance = max(1.0, usd * self.match_tolerance_pct / 100.0)
        for point in self.points:
            if abs(point.trade_usd_value - usd) <= tolerance:
                return point
        return None

    def record_point(self, point: DepthPoint) -> bool:
        """Append a point unless an equivalent size is already recorded."""
        if self.find_point(point.trade_usd_value) is not None:
            logger.debug("Skipping duplicate depth point", usd=point.trade_usd_value)
            return False
        self.points.append(point)
        self.note(
            f"${point.trade_usd_value:,.2f}: {point.input_amount:.6g} -> "
            f"{point.output_amount:.6g}, impact {point.price_impact_pct:.2f}%"
        )
        return True

    def record_error(
        self,
        usd: float,
        kind: ErrorKind,
        message: str,
        http_status: int | None = None,
    ) -> ProbeError:
        error = ProbeError(
            trade_usd_value=usd, kind=kind, message=message, http_status=http_status
        )
        self.errors.append(error)
        self.note(f"${usd:,.2f} failed ({kind.value}): {message}")
        return error

    def record_exception(self, usd: float, exc: QuoteError | AmountError) -> ProbeError:
        return self.record_error(
            usd, exc.kind, str(exc), getattr(exc, "status_code", None)
        )

    def largest_point_usd(self) -> float | None:
        return max((p.trade_usd_value for p in self.points), default=None)
