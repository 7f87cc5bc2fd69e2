"""Fixed-ladder depth sampling with overflow and no-route recovery."""

import asyncio
from collections.abc import Awaitable, Callable, Sequence

import structlog

from ..core.errors import AmountError, AmountOverflowError, NoRouteError, QuoteError
from ..core.types import ErrorKind
from .baseline import BaselineEstimator
from .prober import DepthProber
from .search import MaxLiquiditySearch
from .session import ProbeSession

logger = structlog.get_logger(__name__)

LARGE_AMOUNT_USD = 1_000_000.0
OVERFLOW_START_FRACTION = 0.99


class DepthSampler:
    """Walks the USD ladder for one session.

    Every ladder entry ends as a recorded point or a recorded ProbeError;
    no single entry aborts the run.
    """

    def __init__(
        self,
        prober: DepthProber,
        baseline: BaselineEstimator,
        search: MaxLiquiditySearch,
        large_amount_delay_s: float = 0.1,
        overflow_shrink_factor: float = 0.85,
        overflow_shrink_steps: int = 12,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.prober = prober
        self.baseline = baseline
        self.search = search
        self.large_amount_delay_s = large_amount_delay_s
        self.overflow_shrink_factor = overflow_shrink_factor
        self.overflow_shrink_steps = overflow_shrink_steps
        self._sleep = sleep

    async def sample(self, session: ProbeSession, ladder: Sequence[float]) -> None:
        """Fill the session with points and errors for every ladder size."""
        if not ladder:
            session.note("Empty USD ladder; nothing to probe")
            return

        price = await self.baseline.estimate(session)
        if price is not None:
            session.baseline_price = price

        ceiling_handled = False
        limit_bracketed = False

        for usd in ladder:
            if session.stop_requested():
                break

            if ceiling_handled:
                session.record_error(
                    usd,
                    ErrorKind.AMOUNT_OVERFLOW,
                    f"${usd:,.0f} is above the raw amount ceiling",
                )
                continue

            await self._pace_large_amount(session, usd)

            try:
                point = await self.prober.probe(session, usd)
            except AmountOverflowError as e:
                session.record_exception(usd, e)
                await self._shrink_below_ceiling(session, e.max_safe_usd)
                ceiling_handled = True
                continue
            except NoRouteError as e:
                session.record_exception(usd, e)
                if limit_bracketed:
                    logger.info("Limit already bracketed, skipping search", usd=usd)
                    continue
                limit_bracketed = True
                await self.search.find_max_routable(
                    session, usd, session.largest_point_usd()
                )
                continue
            except (QuoteError, AmountError) as e:
                logger.warning("Ladder probe failed", usd=usd, error=str(e))
                session.record_exception(usd, e)
                continue

            session.record_point(point)

    async def _pace_large_amount(self, session: ProbeSession, usd: float) -> None:
        if usd < LARGE_AMOUNT_USD or self.large_amount_delay_s <= 0:
            return
        if session.deadline.remaining() <= self.large_amount_delay_s:
            return
        await self._sleep(self.large_amount_delay_s)

    async def _shrink_below_ceiling(
        self, session: ProbeSession, max_safe_usd: float | None
    ) -> None:
        """Walk down from the raw ceiling until some size routes."""
        if not max_safe_usd or max_safe_usd <= 0:
            return

        usd = max_safe_usd * OVERFLOW_START_FRACTION
        for _ in range(self.overflow_shrink_steps):
            if session.stop_requested():
                return
            try:
                point = await self.prober.probe(session, usd)
            except (AmountOverflowError, NoRouteError):
                usd *= self.overflow_shrink_factor
                continue
            except (QuoteError, AmountError) as e:
                session.record_exception(usd, e)
                return

            session.record_point(point)
            session.note(f"Largest size under the raw ceiling: ${usd:,.0f}")
            return

        session.note(
            f"No routable size found within {self.overflow_shrink_steps} steps "
            "below the raw ceiling"
        )
