"""Tests for the Jupiter quote client."""

import httpx
import pytest
import respx

from liqdepth.core.errors import (
    InvalidQuoteError,
    NoRouteError,
    QuoteTransportError,
    RateLimitedError,
)
from liqdepth.quote.jupiter import (
    JupiterQuoteClient,
    build_quote_params,
    classify_error_response,
    parse_quote,
)
from liqdepth.quote.pacing import PacingGate

QUOTE_URL = "https://api.jup.ag/swap/v1/quote"
SOL = "So11111111111111111111111111111111111111112"
USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

QUOTE_RESPONSE = {
    "inputMint": SOL,
    "outputMint": USDC,
    "inAmount": "1000000000",
    "outAmount": "150250000",
    "priceImpactPct": "0.0012",
    "slippageBps": 50,
    "routePlan": [],
}


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_client(clock: FakeClock, **kwargs) -> JupiterQuoteClient:
    gate = PacingGate(min_interval_s=0.1, clock=clock, sleep=clock.sleep)
    return JupiterQuoteClient(gate=gate, sleep=clock.sleep, **kwargs)


class TestQuoteHelpers:
    """Test request building and response parsing."""

    def test_build_quote_params(self):
        params = build_quote_params(SOL, USDC, 1_000_000_000, 300)

        assert params["inputMint"] == SOL
        assert params["outputMint"] == USDC
        assert params["amount"] == "1000000000"
        assert params["slippageBps"] == "300"
        assert params["onlyDirectRoutes"] == "false"

    def test_build_quote_params_keeps_large_amounts_exact(self):
        params = build_quote_params(SOL, USDC, 2**64 - 1, 50)

        assert params["amount"] == "18446744073709551615"

    def test_parse_quote(self):
        quote = parse_quote(QUOTE_RESPONSE, slippage_bps=50)

        assert quote.in_amount_raw == 1_000_000_000
        assert quote.out_amount_raw == 150_250_000
        assert quote.price_impact_pct == pytest.approx(0.0012)
        assert quote.slippage_bps == 50

    def test_parse_quote_without_impact(self):
        payload = {"inAmount": "10", "outAmount": "20"}

        assert parse_quote(payload).price_impact_pct is None

    @pytest.mark.parametrize(
        "payload",
        [
            {"inAmount": "1000"},
            {"inAmount": "1000", "outAmount": "1.5"},
            {"inAmount": "-5", "outAmount": "10"},
            {"inAmount": None, "outAmount": "10"},
            [],
        ],
    )
    def test_parse_quote_rejects_malformed_amounts(self, payload):
        with pytest.raises(InvalidQuoteError):
            parse_quote(payload)

    def test_parse_quote_legacy_routes(self):
        payload = {"routes": [{"inAmount": "100", "outAmount": "200"}]}

        quote = parse_quote(payload)
        assert quote.out_amount_raw == 200

        with pytest.raises(NoRouteError):
            parse_quote({"routes": []})

    def test_parse_quote_error_body(self):
        with pytest.raises(NoRouteError):
            parse_quote({"error": "Could not find any route"})

        with pytest.raises(InvalidQuoteError):
            parse_quote({"error": "Something else"})

    @pytest.mark.parametrize(
        "status, body, expected",
        [
            (429, {"error": "Too many requests"}, RateLimitedError),
            (500, {"error": "Internal"}, QuoteTransportError),
            (503, None, QuoteTransportError),
            (400, {"errorCode": "COULD_NOT_FIND_ANY_ROUTE"}, NoRouteError),
            (400, {"errorCode": "NOT_ENOUGH_LIQUIDITY"}, NoRouteError),
            (
                400,
                {"error": "Route plan does not consume all the amount"},
                NoRouteError,
            ),
            (400, {"error": "Invalid mint"}, InvalidQuoteError),
            (404, None, InvalidQuoteError),
        ],
    )
    def test_classify_error_response(self, status, body, expected):
        if body is None:
            response = httpx.Response(status, text="gateway trouble")
        else:
            response = httpx.Response(status, json=body)

        error = classify_error_response(response)

        assert type(error) is expected
        assert error.status_code == status

    def test_classify_reads_retry_after(self):
        response = httpx.Response(429, headers={"Retry-After": "7"})

        error = classify_error_response(response)

        assert isinstance(error, RateLimitedError)
        assert error.retry_after == 7.0


class TestJupiterQuoteClient:
    """Test the client against mocked HTTP responses."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_quote_success(self):
        clock = FakeClock()
        route = respx.get(QUOTE_URL).mock(
            return_value=httpx.Response(200, json=QUOTE_RESPONSE)
        )

        async with make_client(clock, api_key="secret") as client:
            quote = await client.quote(SOL, USDC, 1_000_000_000, 50)

        assert quote.out_amount_raw == 150_250_000
        assert route.call_count == 1
        request = route.calls[0].request
        assert request.url.params["amount"] == "1000000000"
        assert request.url.params["slippageBps"] == "50"
        assert request.headers["x-api-key"] == "secret"

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limit_backoff_then_success(self):
        """Three 429s wait 1s, 2s, 4s; the fourth attempt succeeds."""
        clock = FakeClock()
        route = respx.get(QUOTE_URL).mock(
            side_effect=[
                httpx.Response(429),
                httpx.Response(429),
                httpx.Response(429),
                httpx.Response(200, json=QUOTE_RESPONSE),
            ]
        )

        async with make_client(clock, max_retries=3) as client:
            quote = await client.quote(SOL, USDC, 1_000_000_000, 50)

            assert quote.in_amount_raw == 1_000_000_000
            assert route.call_count == 4
            assert clock.sleeps == [1.0, 2.0, 4.0]
            # pacing timestamp is the moment of the last attempt
            assert client.gate.last_request_at == clock.now == 7.0

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limit_exhausted(self):
        clock = FakeClock()
        route = respx.get(QUOTE_URL).mock(return_value=httpx.Response(429))

        async with make_client(clock, max_retries=2) as client:
            with pytest.raises(RateLimitedError):
                await client.quote(SOL, USDC, 1_000, 50)

        assert route.call_count == 3
        assert clock.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    @respx.mock
    async def test_retry_after_hint_extends_wait(self):
        clock = FakeClock()
        respx.get(QUOTE_URL).mock(
            side_effect=[
                httpx.Response(429, headers={"Retry-After": "5"}),
                httpx.Response(200, json=QUOTE_RESPONSE),
            ]
        )

        async with make_client(clock) as client:
            await client.quote(SOL, USDC, 1_000, 50)

        assert clock.sleeps == [5.0]

    @pytest.mark.asyncio
    @respx.mock
    async def test_backoff_is_capped(self):
        clock = FakeClock()
        respx.get(QUOTE_URL).mock(
            side_effect=[
                httpx.Response(429),
                httpx.Response(429),
                httpx.Response(429),
                httpx.Response(200, json=QUOTE_RESPONSE),
            ]
        )

        async with make_client(clock, retry_max_delay_s=1.5) as client:
            await client.quote(SOL, USDC, 1_000, 50)

        assert clock.sleeps == [1.0, 1.5, 1.5]

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_route_is_not_retried(self):
        clock = FakeClock()
        route = respx.get(QUOTE_URL).mock(
            return_value=httpx.Response(
                400,
                json={
                    "error": "Could not find any route",
                    "errorCode": "COULD_NOT_FIND_ANY_ROUTE",
                },
            )
        )

        async with make_client(clock) as client:
            with pytest.raises(NoRouteError) as exc_info:
                await client.quote(SOL, USDC, 10**18, 5000)

        assert route.call_count == 1
        assert exc_info.value.reason == "COULD_NOT_FIND_ANY_ROUTE"
        assert clock.sleeps == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_invalid_request_is_not_retried(self):
        clock = FakeClock()
        route = respx.get(QUOTE_URL).mock(
            return_value=httpx.Response(400, json={"error": "Invalid inputMint"})
        )

        async with make_client(clock) as client:
            with pytest.raises(InvalidQuoteError):
                await client.quote("bad", USDC, 1_000, 50)

        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_server_error_is_retried(self):
        clock = FakeClock()
        route = respx.get(QUOTE_URL).mock(
            side_effect=[
                httpx.Response(502, text="bad gateway"),
                httpx.Response(200, json=QUOTE_RESPONSE),
            ]
        )

        async with make_client(clock) as client:
            quote = await client.quote(SOL, USDC, 1_000_000_000, 50)

        assert quote.out_amount_raw == 150_250_000
        assert route.call_count == 2
        assert clock.sleeps == [1.0]

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_becomes_transport_error(self):
        clock = FakeClock()
        route = respx.get(QUOTE_URL).mock(
            side_effect=httpx.ConnectTimeout("timed out")
        )

        async with make_client(clock, max_retries=1) as client:
            with pytest.raises(QuoteTransportError):
                await client.quote(SOL, USDC, 1_000, 50)

        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_max_retries_override(self):
        clock = FakeClock()
        route = respx.get(QUOTE_URL).mock(return_value=httpx.Response(429))

        async with make_client(clock, max_retries=3) as client:
            with pytest.raises(RateLimitedError):
                await client.quote(SOL, USDC, 1_000, 50, max_retries=0)

        assert route.call_count == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_body_is_invalid(self):
        clock = FakeClock()
        respx.get(QUOTE_URL).mock(
            return_value=httpx.Response(200, json={"inAmount": "1000"})
        )

        async with make_client(clock) as client:
            with pytest.raises(InvalidQuoteError):
                await client.quote(SOL, USDC, 1_000, 50)

    @pytest.mark.asyncio
    @respx.mock
    async def test_injected_session_is_not_closed(self):
        clock = FakeClock()
        respx.get(QUOTE_URL).mock(
            return_value=httpx.Response(200, json=QUOTE_RESPONSE)
        )

        async with httpx.AsyncClient() as session:
            client = make_client(clock, session=session)
            await client.quote(SOL, USDC, 1_000, 50)
            await client.close()

            assert not session.is_closed
