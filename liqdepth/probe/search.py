"""Largest routable size between a known-good size and a rejected one.

Phase one walks a fixed descending ladder below the rejected target until a
size quotes; phase two bisects between that floor and the nearest rejection
until the gap drops under the tier's step size. Both phases share one probe
budget and the session deadline.
"""

from dataclasses import dataclass

import structlog

from ..core.errors import AmountError, AmountOverflowError, NoRouteError, QuoteError
from ..core.types import DepthPoint, ErrorKind
from .prober import DepthProber
from .session import ProbeSession

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SearchTier:
    min_target_usd: float
    fractions: tuple[float, ...]
    step_usd: float


SEARCH_TIERS = (
    SearchTier(
        10_000_000.0, tuple(round(0.95 - 0.05 * i, 2) for i in range(16)), 100_000.0
    ),
    SearchTier(1_000_000.0, tuple(round(0.9 - 0.1 * i, 1) for i in range(9)), 10_000.0),
    SearchTier(100_000.0, (0.9, 0.75, 0.5, 0.25, 0.1), 1_000.0),
    SearchTier(1_000.0, (0.75, 0.5, 0.25, 0.1), 100.0),
    SearchTier(0.0, (0.75, 0.5, 0.25), 10.0),
)


def tier_for(target_usd: float) -> SearchTier:
    for tier in SEARCH_TIERS:
        if target_usd >= tier.min_target_usd:
            return tier
    return SEARCH_TIERS[-1]


def descending_candidates(
    target_usd: float, last_known_good: float | None = None
) -> list[float]:
    """Candidate sizes below the target, strictly above the known-good size."""
    floor = last_known_good or 0.0
    candidates = [target_usd * f for f in tier_for(target_usd).fractions]
    return [c for c in candidates if floor < c < target_usd]


class _SearchStopped(Exception):
    """Probe budget, deadline or a non-route failure ended the search."""


@dataclass
class _SearchRun:
    session: ProbeSession
    max_probes: int
    probes: int = 0


class MaxLiquiditySearch:
    """Locates the largest size the oracle can still route."""

    def __init__(self, prober: DepthProber, max_probes: int = 24) -> None:
        self.prober = prober
        self.max_probes = max_probes

    async def find_max_routable(
        self,
        session: ProbeSession,
        rejected_target: float,
        last_known_good: float | None = None,
    ) -> DepthPoint | None:
        """Search below `rejected_target` for the largest routable size.

        Every successful probe is recorded on the session. Returns the
        largest point found, or None when nothing below the target routes.
        """
        tier = tier_for(rejected_target)
        run = _SearchRun(session=session, max_probes=self.max_probes)
        known_good_point = (
            session.find_point(last_known_good) if last_known_good else None
        )

        logger.info(
            "Searching for maximum routable size",
            rejected_usd=rejected_target,
            last_known_good=last_known_good,
            step_usd=tier.step_usd,
        )

        lo_point: DepthPoint | None = None
        hi = rejected_target
        try:
            for candidate in descending_candidates(rejected_target, last_known_good):
                point = await self._try(run, candidate)
                if point is not None:
                    lo_point = point
                    break
                hi = candidate

            lo = lo_point.trade_usd_value if lo_point else last_known_good
            if lo is None:
                session.record_error(
                    rejected_target,
                    ErrorKind.NO_ROUTE,
                    "Search exhausted: no routable size below target",
                )
                return None

            while hi - lo >= tier.step_usd:
                mid = (lo + hi) / 2.0
                point = await self._try(run, mid)
                if point is None:
                    hi = mid
                else:
                    lo, lo_point = mid, point
        except _SearchStopped:
            pass

        best = lo_point or known_good_point
        if best is not None:
            session.note(
                f"Max routable size near ${best.trade_usd_value:,.0f} "
                f"(rejected ${rejected_target:,.0f}, {run.probes} probes)"
            )
        else:
            session.record_error(
                rejected_target,
                ErrorKind.NO_ROUTE,
                f"Search stopped after {run.probes} probes without a routable size",
            )
        return best

    async def _try(self, run: _SearchRun, usd: float) -> DepthPoint | None:
        """Probe one size; None means the oracle cannot route it."""
        session = run.session
        if session.stop_requested():
            raise _SearchStopped()
        if run.probes >= run.max_probes:
            session.note(f"Search probe budget ({run.max_probes}) used up")
            raise _SearchStopped()

        try:
            point = await self.prober.probe(session, usd)
        except AmountOverflowError:
            return None
        except AmountError as e:
            session.record_exception(usd, e)
            raise _SearchStopped() from e
        except NoRouteError:
            run.probes += 1
            logger.debug("Search candidate not routable", usd=usd)
            return None
        except QuoteError as e:
            run.probes += 1
            session.record_exception(usd, e)
            raise _SearchStopped() from e

        run.probes += 1
        session.record_point(point)
        return point
