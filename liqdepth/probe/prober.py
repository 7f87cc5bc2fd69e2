"""Single USD-sized probe: convert, quote, and measure one depth point."""

import math

import structlog

from ..core.errors import InvalidQuoteError
from ..core.interfaces import QuoteSource
from ..core.types import DepthPoint, ProbeDirection, QuoteResult
from .amounts import (
    FALLBACK_UNIT_PRICE,
    is_valid_price,
    slippage_for_target,
    to_raw_amount,
)
from .session import ProbeSession

logger = structlog.get_logger(__name__)


def price_impact_pct(
    execution_price: float,
    baseline_price: float | None,
    oracle_impact: float | None = None,
) -> float:
    """Price impact in percent.

    The oracle's routing-aware figure (a fraction) wins when present;
    otherwise deviation from the baseline is used.
    """
    if oracle_impact is not None and math.isfinite(oracle_impact):
        return abs(oracle_impact) * 100.0
    if baseline_price is None or baseline_price <= 0:
        return 0.0
    return abs(execution_price - baseline_price) / baseline_price * 100.0


class DepthProber:
    """Measures the pair at a given USD size through the quote source."""

    def __init__(
        self,
        client: QuoteSource,
        default_slippage_bps: int = 50,
        max_retries: int | None = None,
    ) -> None:
        self.client = client
        self.default_slippage_bps = default_slippage_bps
        self.max_retries = max_retries

    def unit_price(self, session: ProbeSession) -> float:
        """USD per whole spend token."""
        if session.direction is ProbeDirection.BUY:
            return 1.0
        if session.baseline_price is not None and session.baseline_price > 0:
            return session.baseline_price
        return FALLBACK_UNIT_PRICE

    def raw_amount(
        self, session: ProbeSession, usd: float, unit_price: float | None = None
    ) -> int:
        """Raw spend amount for a USD size; raises AmountError before any I/O."""
        price = self.unit_price(session) if unit_price is None else unit_price
        return to_raw_amount(usd, session.spend_token.decimals, price)

    async def quote_raw(
        self,
        session: ProbeSession,
        raw_amount: int,
        slippage_bps: int,
        max_retries: int | None = None,
    ) -> QuoteResult:
        retries = self.max_retries if max_retries is None else max_retries
        return await self.client.quote(
            session.spend_token.mint,
            session.receive_token.mint,
            raw_amount,
            slippage_bps,
            max_retries=retries,
        )

    @staticmethod
    def orient(
        session: ProbeSession, quote: QuoteResult
    ) -> tuple[int, int, float, float, float]:
        """Map a quote onto pair orientation.

        Returns:
            (raw_input, raw_output, input_amount, output_amount, price) where
            price is output per input

        Raises:
            InvalidQuoteError: If amounts or the price are not usable
        """
        pair = session.pair
        if session.direction is ProbeDirection.BUY:
            raw_in, raw_out = quote.out_amount_raw, quote.in_amount_raw
        else:
            raw_in, raw_out = quote.in_amount_raw, quote.out_amount_raw

        input_amount = raw_in / 10**pair.input.decimals
        output_amount = raw_out / 10**pair.output.decimals

        if not math.isfinite(input_amount) or input_amount <= 0:
            raise InvalidQuoteError(f"Invalid input amount {input_amount}")
        if not math.isfinite(output_amount) or output_amount <= 0:
            raise InvalidQuoteError(f"Invalid output amount {output_amount}")

        price = output_amount / input_amount
        if not is_valid_price(price):
            raise InvalidQuoteError(f"Invalid execution price {price}")
        return raw_in, raw_out, input_amount, output_amount, price

    def measure(
        self, session: ProbeSession, usd: float, quote: QuoteResult
    ) -> DepthPoint:
        """Turn a quote into a depth point.

        Promotes the execution price to baseline when none exists yet.

        Raises:
            InvalidQuoteError: If amounts or the price are not usable
        """
        raw_in, raw_out, input_amount, output_amount, price = self.orient(
            session, quote
        )

        if session.baseline_price is None:
            session.baseline_price = price
            session.note(f"Using first successful quote as baseline price: {price:.6g}")

        impact = price_impact_pct(price, session.baseline_price, quote.price_impact_pct)
        if impact > 1000:
            logger.warning("Extreme price impact", usd=usd, impact_pct=impact)

        return DepthPoint(
            trade_usd_value=usd,
            input_amount=input_amount,
            output_amount=output_amount,
            execution_price=price,
            price_impact_pct=impact,
            raw_input_amount=raw_in,
            raw_output_amount=raw_out,
        )

    async def probe(
        self, session: ProbeSession, usd: float, unit_price: float | None = None
    ) -> DepthPoint:
        """Quote the pair at `usd` and return the measured point.

        Raises:
            AmountError: Size cannot be expressed (no request is sent)
            QuoteError: Oracle failure, already classified
        """
        raw = self.raw_amount(session, usd, unit_price)
        slippage = slippage_for_target(usd, self.default_slippage_bps)
        quote = await self.quote_raw(session, raw, slippage)
        return self.measure(session, usd, quote)
