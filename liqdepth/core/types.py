"""Core data types for liquidity depth probing."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_DECIMALS = 6
MAX_DECIMALS = 255


class ProbeDirection(str, Enum):
    """Which side of the pair is spent by a USD-denominated probe."""

    BUY = "buy"  # spend the output token, acquire the input token
    SELL = "sell"  # spend the input token, acquire the output token


class ErrorKind(str, Enum):
    """Classification of a failed or skipped probe."""

    RATE_LIMITED = "rate_limited"
    NO_ROUTE = "no_route"
    INVALID = "invalid"
    TRANSPORT = "transport"
    AMOUNT_TOO_SMALL = "amount_too_small"
    AMOUNT_OVERFLOW = "amount_overflow"


def normalize_decimals(value: Any) -> int:
    """Coerce a decimals value, falling back to 6 when it is unusable."""
    if isinstance(value, bool):
        return DEFAULT_DECIMALS
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, int) and 0 <= value <= MAX_DECIMALS:
        return value
    return DEFAULT_DECIMALS


class TokenRef(BaseModel):
    """Token mint with the decimals that scale its raw amounts."""

    model_config = ConfigDict(frozen=True)

    mint: str = Field(description="Token mint address")
    decimals: int = Field(default=DEFAULT_DECIMALS, description="Base-unit exponent")

    @field_validator("decimals", mode="before")
    @classmethod
    def _coerce_decimals(cls, value: Any) -> int:
        return normalize_decimals(value)


class TokenPair(BaseModel):
    """Ordered token pair; prices are quoted as output per input."""

    model_config = ConfigDict(frozen=True)

    input: TokenRef = Field(description="Input (base) token")
    output: TokenRef = Field(description="Output (quote) token")


class TokenInfo(BaseModel):
    """Token catalog entry."""

    mint: str = Field(description="Token mint address")
    symbol: str = Field(default="", description="Ticker symbol")
    name: str = Field(default="", description="Display name")
    decimals: int = Field(default=DEFAULT_DECIMALS, description="Token decimals")

    @field_validator("decimals", mode="before")
    @classmethod
    def _coerce_decimals(cls, value: Any) -> int:
        return normalize_decimals(value)


class QuoteResult(BaseModel):
    """Parsed quote oracle response."""

    in_amount_raw: int = Field(description="Raw amount spent")
    out_amount_raw: int = Field(description="Raw amount received")
    price_impact_pct: float | None = Field(
        default=None, description="Oracle price impact as a fraction (0.01 = 1%)"
    )
    slippage_bps: int | None = Field(default=None, description="Requested slippage")


class DepthPoint(BaseModel):
    """One measured point of the depth curve."""

    model_config = ConfigDict(frozen=True)

    trade_usd_value: float = Field(description="USD value actually traded")
    input_amount: float = Field(description="Input token amount (readable units)")
    output_amount: float = Field(description="Output token amount (readable units)")
    execution_price: float = Field(description="Output per input")
    price_impact_pct: float = Field(ge=0.0, description="Price impact percentage")
    cumulative_input_liquidity: float = Field(
        default=0.0, description="Running sum of valid input amounts"
    )
    cumulative_output_liquidity: float = Field(
        default=0.0, description="Running sum of valid output amounts"
    )
    raw_input_amount: int | None = Field(default=None, description="Raw input amount")
    raw_output_amount: int | None = Field(
        default=None, description="Raw output amount"
    )


class ProbeError(BaseModel):
    """Diagnostic record for a failed or skipped target size."""

    model_config = ConfigDict(frozen=True)

    trade_usd_value: float = Field(description="Target USD size")
    kind: ErrorKind = Field(description="Error classification")
    message: str = Field(description="Human-readable detail")
    http_status: int | None = Field(default=None, description="Upstream HTTP status")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC), description="When it happened"
    )


class DepthResult(BaseModel):
    """Outcome of one depth calculation."""

    points: list[DepthPoint] = Field(default_factory=list)
    errors: list[ProbeError] = Field(default_factory=list)
    baseline_price: float | None = Field(default=None, description="Reference price")
    elapsed_ms: int = Field(default=0, description="Wall-clock duration")
    truncated: bool = Field(
        default=False, description="Stopped early by time budget or cancellation"
    )
    log: list[str] = Field(default_factory=list, description="Narrative diagnostics")

    @property
    def max_trade_usd(self) -> float:
        return max((p.trade_usd_value for p in self.points), default=0.0)


class DepthSnapshot(BaseModel):
    """Persisted summary of a depth result."""

    input_mint: str = Field(description="Input token mint")
    output_mint: str = Field(description="Output token mint")
    direction: ProbeDirection = Field(description="Probe direction")
    baseline_price: float | None = Field(default=None)
    point_count: int = Field(default=0)
    error_count: int = Field(default=0)
    max_trade_usd: float = Field(default=0.0, description="Largest routable size found")
    max_price_impact_pct: float = Field(default=0.0)
    ts: datetime = Field(default_factory=lambda: datetime.now(UTC))
    result: DepthResult = Field(description="Full result payload")
