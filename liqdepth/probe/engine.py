"""Caller-facing depth calculation."""

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence

import structlog

from ..config.settings import AppSettings
from ..core.interfaces import QuoteSource, TokenCatalog
from ..core.types import (
    DEFAULT_DECIMALS,
    DepthResult,
    ErrorKind,
    ProbeDirection,
    TokenPair,
    TokenRef,
)
from ..quote.jupiter import JupiterQuoteClient
from ..quote.pacing import process_gate
from .assemble import assemble_depth
from .baseline import BaselineEstimator
from .prober import DepthProber
from .sampler import DepthSampler
from .search import MaxLiquiditySearch
from .session import Deadline, ProbeSession

logger = structlog.get_logger(__name__)


class DepthCalculator:
    """Estimates liquidity depth for a token pair through a quote oracle."""

    def __init__(
        self,
        settings: AppSettings | None = None,
        quote_source: QuoteSource | None = None,
        catalog: TokenCatalog | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the calculator.

        Args:
            settings: Application settings (defaults from environment)
            quote_source: Quote oracle; a Jupiter client is built when omitted
            catalog: Token catalog used to resolve decimals
            clock: Monotonic clock for the time budget
            sleep: Sleep function for pacing delays
        """
        self.settings = settings or AppSettings()
        self.catalog = catalog
        self._clock = clock
        self._sleep = sleep

        if quote_source is None:
            quote_source = JupiterQuoteClient(
                base_url=self.settings.jupiter_base,
                api_key=self.settings.jupiter_api_key,
                max_retries=self.settings.max_rate_limit_retries,
                retry_base_delay_s=self.settings.rate_limit_retry_delay_s,
                retry_max_delay_s=self.settings.rate_limit_max_delay_s,
                request_timeout_s=self.settings.request_timeout_s,
                gate=process_gate(self.settings.min_quote_interval_ms / 1000.0),
                sleep=sleep,
            )
            self._owns_source = True
        else:
            self._owns_source = False
        self.quote_source = quote_source

    async def close(self) -> None:
        if self._owns_source and isinstance(self.quote_source, JupiterQuoteClient):
            await self.quote_source.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _token(self, mint: str) -> TokenRef:
        if self.catalog is None:
            return TokenRef(mint=mint, decimals=DEFAULT_DECIMALS)
        try:
            info = await self.catalog.resolve(mint)
        except Exception as e:
            logger.warning("Token lookup failed", mint=mint, error=str(e))
            info = None
        if info is None:
            logger.info("Unknown token, assuming default decimals", mint=mint)
            return TokenRef(mint=mint, decimals=DEFAULT_DECIMALS)
        return TokenRef(mint=mint, decimals=info.decimals)

    def _sampler(self) -> DepthSampler:
        s = self.settings
        prober = DepthProber(self.quote_source, default_slippage_bps=s.default_slippage_bps)
        return DepthSampler(
            prober=prober,
            baseline=BaselineEstimator(
                prober,
                trial_usd=s.baseline_trial_usd,
                reverse_probe_usd=s.reverse_probe_usd,
                reverse_retries=s.reverse_probe_retries,
                trial_retries=s.baseline_retries,
            ),
            search=MaxLiquiditySearch(prober, max_probes=s.max_search_probes),
            large_amount_delay_s=s.large_amount_delay_ms / 1000.0,
            overflow_shrink_factor=s.overflow_shrink_factor,
            overflow_shrink_steps=s.overflow_shrink_steps,
            sleep=self._sleep,
        )

    async def calculate_depth(
        self,
        input_mint: str,
        output_mint: str,
        direction: ProbeDirection | str,
        *,
        ladder: Sequence[float] | None = None,
        time_budget_s: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> DepthResult:
        """Probe the pair across the USD ladder.

        Never raises for oracle or conversion failures: they are returned as
        ProbeErrors next to whatever points were measured.

        Args:
            input_mint: Base token mint (prices are output per input)
            output_mint: Quote token mint
            direction: Buy spends the output token, Sell spends the input token
            ladder: USD sizes to probe (configured ladder when omitted)
            time_budget_s: Wall-clock budget (configured budget when omitted)
            cancel_event: Set to stop before the next probe

        Returns:
            Assembled depth result, possibly partial
        """
        direction = ProbeDirection(direction)
        ladder = list(self.settings.usd_ladder if ladder is None else ladder)
        budget = (
            self.settings.max_calculation_time_s
            if time_budget_s is None
            else time_budget_s
        )

        # token lookups are charged to the budget
        deadline = Deadline(budget, cancel_event=cancel_event, clock=self._clock)
        started = deadline.started_at
        pair = TokenPair(
            input=await self._token(input_mint), output=await self._token(output_mint)
        )
        session = ProbeSession(
            pair=pair,
            direction=direction,
            deadline=deadline,
            match_tolerance_pct=self.settings.point_match_tolerance_pct,
        )

        logger.info(
            "Starting depth calculation",
            input_mint=input_mint,
            output_mint=output_mint,
            direction=direction.value,
            ladder_size=len(ladder),
            budget_s=budget,
        )

        try:
            if not session.stop_requested():
                await self._sampler().sample(session, ladder)
        except Exception as e:
            logger.exception("Depth calculation failed", error=str(e))
            session.record_error(
                session.largest_point_usd() or 0.0,
                ErrorKind.TRANSPORT,
                f"Unexpected failure: {e}",
            )

        elapsed_ms = int((self._clock() - started) * 1000)
        result = assemble_depth(
            session.points,
            session.baseline_price,
            errors=session.errors,
            log=session.log,
            elapsed_ms=elapsed_ms,
            truncated=session.truncated,
        )

        logger.info(
            "Depth calculation finished",
            direction=direction.value,
            points=len(result.points),
            errors=len(result.errors),
            max_trade_usd=result.max_trade_usd,
            elapsed_ms=elapsed_ms,
            truncated=result.truncated,
        )
        return result
