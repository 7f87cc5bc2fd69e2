"""Typed failures raised by the quote client and the amount converter.

Quote errors are classified exactly once, at the HTTP boundary, so callers
branch on exception type rather than on upstream message text:

- RateLimitedError (HTTP 429): retried with exponential backoff
- QuoteTransportError (5xx, timeouts, connection errors): retried
- NoRouteError (no path / amount not fully consumable): never retried,
  the sampler searches for a smaller size instead
- InvalidQuoteError (other 4xx, malformed body): never retried

Amount errors are local and never reach the network.
"""

from .types import ErrorKind


class QuoteError(Exception):
    """Base class for quote oracle failures."""

    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        reason: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.reason = reason
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.reason and self.reason not in self.message:
            parts.append(f"reason={self.reason}")
        return " | ".join(parts)


class RateLimitedError(QuoteError):
    """Upstream throttled the request."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: str,
        status_code: int | None = 429,
        reason: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, reason=reason)
        self.retry_after = retry_after


class NoRouteError(QuoteError):
    """Upstream found no route for the requested amount."""

    kind = ErrorKind.NO_ROUTE


class InvalidQuoteError(QuoteError):
    """Request rejected or response malformed."""

    kind = ErrorKind.INVALID


class QuoteTransportError(QuoteError):
    """Connectivity failure or upstream server error."""

    kind = ErrorKind.TRANSPORT


class AmountError(ValueError):
    """USD target cannot be expressed as a raw token amount."""

    kind: ErrorKind = ErrorKind.AMOUNT_TOO_SMALL

    def __init__(self, message: str, usd_target: float) -> None:
        self.usd_target = usd_target
        super().__init__(message)


class AmountTooSmallError(AmountError):
    """Converted raw amount is zero or the inputs are unusable."""

    kind = ErrorKind.AMOUNT_TOO_SMALL


class AmountOverflowError(AmountError):
    """Converted raw amount exceeds the oracle's integer width."""

    kind = ErrorKind.AMOUNT_OVERFLOW

    def __init__(
        self, message: str, usd_target: float, raw_amount: int, max_safe_usd: float
    ) -> None:
        super().__init__(message, usd_target)
        self.raw_amount = raw_amount
        self.max_safe_usd = max_safe_usd
