"""Jupiter quote client with pacing, backoff and error classification."""

import asyncio
import math
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.errors import (
    InvalidQuoteError,
    NoRouteError,
    QuoteError,
    QuoteTransportError,
    RateLimitedError,
)
from ..core.interfaces import QuoteSource
from ..core.types import QuoteResult
from .pacing import PacingGate, process_gate

logger = structlog.get_logger(__name__)

NO_ROUTE_CODES = frozenset(
    {
        "COULD_NOT_FIND_ANY_ROUTE",
        "NO_ROUTES_FOUND",
        "ROUTE_PLAN_DOES_NOT_CONSUME_ALL_THE_AMOUNT",
        "NOT_ENOUGH_LIQUIDITY",
    }
)

NO_ROUTE_PHRASES = (
    "could not find any route",
    "no routes found",
    "does not consume all the amount",
    "not fully consumable",
    "not enough liquidity",
)


def build_quote_params(
    input_mint: str,
    output_mint: str,
    amount: int,
    slippage_bps: int,
    only_direct_routes: bool = False,
) -> dict[str, Any]:
    """Build query parameters for Jupiter quote endpoint.

    Args:
        input_mint: Input token mint address
        output_mint: Output token mint address
        amount: Amount in smallest units of the input token
        slippage_bps: Slippage tolerance in basis points
        only_direct_routes: Whether to only return direct routes

    Returns:
        Dictionary of query parameters
    """
    return {
        "inputMint": input_mint,
        "outputMint": output_mint,
        "amount": str(amount),
        "slippageBps": str(slippage_bps),
        "onlyDirectRoutes": "true" if only_direct_routes else "false",
    }


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 and math.isfinite(seconds) else None


def _is_no_route(code: str | None, message: str) -> bool:
    if code and code.upper() in NO_ROUTE_CODES:
        return True
    lowered = message.lower()
    return any(phrase in lowered for phrase in NO_ROUTE_PHRASES)


def classify_error_response(response: httpx.Response) -> QuoteError:
    """Map a non-2xx Jupiter response to a typed quote error."""
    status = response.status_code
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        payload = {}

    code = payload.get("errorCode")
    code = code if isinstance(code, str) else None
    message = payload.get("error") or payload.get("message") or response.text[:200]
    message = str(message) if message else f"HTTP {status}"

    if status == 429:
        return RateLimitedError(
            message,
            status_code=status,
            reason=code,
            retry_after=_parse_retry_after(response.headers.get("retry-after")),
        )
    if status >= 500:
        return QuoteTransportError(message, status_code=status, reason=code)
    if _is_no_route(code, message):
        return NoRouteError(message, status_code=status, reason=code)
    return InvalidQuoteError(message, status_code=status, reason=code)


def _raw_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def parse_quote(payload: Any, slippage_bps: int | None = None) -> QuoteResult:
    """Parse a Jupiter quote body into a QuoteResult.

    Raises:
        NoRouteError: If a 200 body carries a no-route error
        InvalidQuoteError: If required fields are missing or malformed
    """
    if not isinstance(payload, dict):
        raise InvalidQuoteError("Quote response is not an object")

    if "error" in payload:
        message = str(payload.get("error"))
        code = payload.get("errorCode")
        code = code if isinstance(code, str) else None
        if _is_no_route(code, message):
            raise NoRouteError(message, status_code=200, reason=code)
        raise InvalidQuoteError(message, status_code=200, reason=code)

    # Legacy v4 responses wrap the best route in a list
    routes = payload.get("routes")
    if isinstance(routes, list):
        if not routes:
            raise NoRouteError("No routes available for quote", status_code=200)
        payload = routes[0] if isinstance(routes[0], dict) else {}

    in_amount = _raw_int(payload.get("inAmount"))
    out_amount = _raw_int(payload.get("outAmount"))
    if in_amount is None or out_amount is None:
        raise InvalidQuoteError("Invalid quote response: missing inAmount/outAmount")

    impact = payload.get("priceImpactPct")
    price_impact: float | None = None
    if impact is not None:
        try:
            price_impact = float(impact)
        except (TypeError, ValueError):
            price_impact = None
        if price_impact is not None and not math.isfinite(price_impact):
            price_impact = None

    return QuoteResult(
        in_amount_raw=in_amount,
        out_amount_raw=out_amount,
        price_impact_pct=price_impact,
        slippage_bps=slippage_bps,
    )


def backoff_wait(
    base_delay_s: float, max_delay_s: float
) -> Callable[[RetryCallState], float]:
    """Exponential wait that honors a larger Retry-After hint."""
    exponential = wait_exponential(multiplier=base_delay_s, max=max_delay_s)

    def _wait(retry_state: RetryCallState) -> float:
        delay = exponential(retry_state)
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        hint = getattr(exc, "retry_after", None)
        if hint is not None:
            delay = max(delay, min(hint, max_delay_s))
        return delay

    return _wait


class JupiterQuoteClient(QuoteSource):
    """Quote client for the Jupiter swap API."""

    def __init__(
        self,
        base_url: str = "https://api.jup.ag/swap/v1",
        api_key: str | None = None,
        max_retries: int = 3,
        retry_base_delay_s: float = 1.0,
        retry_max_delay_s: float = 30.0,
        request_timeout_s: float = 15.0,
        gate: PacingGate | None = None,
        session: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the quote client.

        Args:
            base_url: Jupiter swap API base URL
            api_key: Optional API key sent as x-api-key
            max_retries: Retries after rate-limit or transport failures
            retry_base_delay_s: First backoff delay, doubled per attempt
            retry_max_delay_s: Backoff cap
            request_timeout_s: Per-request timeout
            gate: Pacing gate (defaults to the process-wide gate)
            session: Optional HTTP session
            sleep: Sleep function used between retries
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.max_retries = max_retries
        self.retry_base_delay_s = retry_base_delay_s
        self.retry_max_delay_s = retry_max_delay_s
        self.request_timeout_s = request_timeout_s
        self.gate = gate or process_gate()
        self._sleep = sleep

        self._session = session or httpx.AsyncClient(timeout=request_timeout_s)
        self._owns_session = session is None

    async def close(self) -> None:
        if self._owns_session:
            await self._session.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    async def _request_once(self, params: dict[str, Any]) -> Any:
        await self.gate.wait()
        url = f"{self.base_url}/quote"
        try:
            response = await self._session.get(
                url,
                params=params,
                headers=self._headers(),
                timeout=self.request_timeout_s,
            )
        except httpx.TimeoutException as e:
            raise QuoteTransportError(f"Quote request timed out: {e}") from e
        except httpx.TransportError as e:
            raise QuoteTransportError(f"Quote request failed: {e}") from e

        if response.status_code >= 400:
            raise classify_error_response(response)

        try:
            return response.json()
        except ValueError as e:
            raise InvalidQuoteError(
                "Quote response is not valid JSON", status_code=response.status_code
            ) from e

    def _log_retry(self, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        wait_s = retry_state.next_action.sleep if retry_state.next_action else None
        logger.warning(
            "Retrying Jupiter quote",
            attempt=retry_state.attempt_number,
            wait_s=wait_s,
            error_kind=getattr(exc, "kind", None),
            error=str(exc),
        )

    async def quote(
        self,
        input_mint: str,
        output_mint: str,
        raw_amount: int,
        slippage_bps: int,
        max_retries: int | None = None,
    ) -> QuoteResult:
        """Quote an exact raw input amount.

        Args:
            input_mint: Mint being spent
            output_mint: Mint being received
            raw_amount: Amount in smallest units of the input mint
            slippage_bps: Slippage tolerance passed through to Jupiter
            max_retries: Override for the configured retry count

        Returns:
            Parsed quote

        Raises:
            RateLimitedError: Throttled on every attempt
            QuoteTransportError: Connectivity or server failure on every attempt
            NoRouteError: No route for this amount (not retried)
            InvalidQuoteError: Rejected request or malformed response (not retried)
        """
        retries = self.max_retries if max_retries is None else max_retries
        params = build_quote_params(input_mint, output_mint, raw_amount, slippage_bps)

        logger.debug(
            "Requesting Jupiter quote",
            input_mint=input_mint,
            output_mint=output_mint,
            amount=raw_amount,
            slippage_bps=slippage_bps,
        )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=backoff_wait(self.retry_base_delay_s, self.retry_max_delay_s),
            retry=retry_if_exception_type((RateLimitedError, QuoteTransportError)),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                payload = await self._request_once(params)
                return parse_quote(payload, slippage_bps=slippage_bps)

        raise QuoteTransportError("Quote retries exhausted")  # pragma: no cover
