"""USD to raw token amount conversion and size-dependent request tuning."""

import math
from decimal import ROUND_FLOOR, Decimal, InvalidOperation

from ..core.errors import AmountOverflowError, AmountTooSmallError

# Jupiter carries raw amounts as u64
MAX_RAW_AMOUNT = 2**64 - 1

# Unit price assumed for a sell-side token when no baseline exists
FALLBACK_UNIT_PRICE = 100.0

# Prices above this are treated as corrupted upstream data
PRICE_SANITY_CEILING = 1e10

SLIPPAGE_TIERS = (
    (50_000_000.0, 5000),
    (10_000_000.0, 1000),
    (1_000_000.0, 300),
)


def _positive_finite(value: float) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and value > 0


def to_raw_amount(usd_target: float, decimals: int, unit_price: float) -> int:
    """Convert a USD target into raw base units of the spend token.

    Args:
        usd_target: Notional to trade in USD
        decimals: Spend token decimals
        unit_price: USD per whole spend token (1.0 for a USD-pegged token)

    Returns:
        floor(usd_target / unit_price * 10**decimals)

    Raises:
        AmountTooSmallError: If the result is zero or inputs are unusable
        AmountOverflowError: If the result exceeds MAX_RAW_AMOUNT
    """
    if not _positive_finite(usd_target) or not _positive_finite(unit_price):
        raise AmountTooSmallError(
            f"Cannot size ${usd_target} at unit price {unit_price}", usd_target
        )

    try:
        scaled = (
            Decimal(str(usd_target)) / Decimal(str(unit_price)) * (Decimal(10) ** decimals)
        )
        raw = int(scaled.to_integral_value(rounding=ROUND_FLOOR))
    except (InvalidOperation, OverflowError) as e:
        raise AmountTooSmallError(f"Cannot size ${usd_target}: {e}", usd_target) from e

    if raw <= 0:
        raise AmountTooSmallError(
            f"${usd_target} is below one base unit at {decimals} decimals", usd_target
        )
    if raw > MAX_RAW_AMOUNT:
        raise AmountOverflowError(
            f"${usd_target} needs raw amount {raw} above u64 ceiling",
            usd_target,
            raw_amount=raw,
            max_safe_usd=max_safe_usd(decimals, unit_price),
        )
    return raw


def max_safe_usd(decimals: int, unit_price: float) -> float:
    """Largest USD notional whose raw amount fits in MAX_RAW_AMOUNT."""
    return MAX_RAW_AMOUNT / 10**decimals * unit_price


def slippage_for_target(usd_target: float, default_bps: int = 50) -> int:
    """Slippage tolerance for a probe; wider at sizes where any route counts."""
    for threshold, bps in SLIPPAGE_TIERS:
        if usd_target >= threshold:
            return bps
    return default_bps


def is_valid_price(price: float | None) -> bool:
    return (
        price is not None
        and math.isfinite(price)
        and 0 < price < PRICE_SANITY_CEILING
    )
