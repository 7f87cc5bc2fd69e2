"""Small-size reference price discovery."""

import structlog

from ..core.errors import AmountError, QuoteError
from ..core.types import ProbeDirection
from .amounts import is_valid_price, slippage_for_target, to_raw_amount
from .prober import DepthProber
from .session import ProbeSession

logger = structlog.get_logger(__name__)

# $/token guesses used to size a sell-side trial when no price is known
UNIT_PRICE_GUESSES = (100.0, 10.0, 1.0, 0.1)


class BaselineEstimator:
    """Establishes the spot price used for sizing and price impact."""

    def __init__(
        self,
        prober: DepthProber,
        trial_usd: list[float] | tuple[float, ...] = (100.0, 50.0, 10.0),
        reverse_probe_usd: float = 100.0,
        reverse_retries: int = 1,
        trial_retries: int = 2,
    ) -> None:
        self.prober = prober
        self.trial_usd = tuple(trial_usd)
        self.reverse_probe_usd = reverse_probe_usd
        self.reverse_retries = reverse_retries
        self.trial_retries = trial_retries

    async def estimate(self, session: ProbeSession) -> float | None:
        """Return a valid baseline price (output per input) or None."""
        price = None
        if session.direction is ProbeDirection.SELL:
            price = await self._reverse_probe(session)

        if price is None:
            price = await self._trial_ladder(session)

        if price is None:
            session.note(
                "Could not establish baseline price; first successful quote will be used"
            )
        return price

    async def _reverse_probe(self, session: ProbeSession) -> float | None:
        """Buy the input token with a small amount of the output token."""
        if session.stop_requested():
            return None

        pair = session.pair
        usd = self.reverse_probe_usd
        try:
            raw = to_raw_amount(usd, pair.output.decimals, 1.0)
            quote = await self.prober.client.quote(
                pair.output.mint,
                pair.input.mint,
                raw,
                slippage_for_target(usd, self.prober.default_slippage_bps),
                max_retries=self.reverse_retries,
            )
        except (AmountError, QuoteError) as e:
            logger.info("Reverse baseline probe failed", error=str(e))
            session.note(f"Reverse quote for price estimate failed: {e}")
            return None

        spent = quote.in_amount_raw / 10**pair.output.decimals
        received = quote.out_amount_raw / 10**pair.input.decimals
        price = spent / received if received > 0 else None
        if not is_valid_price(price):
            session.note(f"Reverse quote gave unusable price {price}")
            return None

        session.note(f"Price estimate from reverse quote: {price:.6g}")
        return price

    def _trial_unit_price(self, session: ProbeSession, usd: float) -> float | None:
        if session.direction is ProbeDirection.BUY:
            return 1.0
        decimals = session.spend_token.decimals
        for guess in UNIT_PRICE_GUESSES:
            try:
                to_raw_amount(usd, decimals, guess)
            except AmountError:
                continue
            return guess
        return None

    async def _trial_ladder(self, session: ProbeSession) -> float | None:
        for usd in self.trial_usd:
            if session.stop_requested():
                return None

            unit_price = self._trial_unit_price(session, usd)
            if unit_price is None:
                continue

            try:
                raw = to_raw_amount(usd, session.spend_token.decimals, unit_price)
                quote = await self.prober.quote_raw(
                    session,
                    raw,
                    slippage_for_target(usd, self.prober.default_slippage_bps),
                    max_retries=self.trial_retries,
                )
                price = self.prober.orient(session, quote)[-1]
            except (AmountError, QuoteError) as e:
                logger.info("Baseline trial failed", usd=usd, error=str(e))
                session.note(f"Baseline trial ${usd:,.0f} failed: {e}")
                continue

            session.note(f"Baseline price from ${usd:,.0f} trial: {price:.6g}")
            return price
        return None
