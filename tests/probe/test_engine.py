"""End-to-end tests for DepthCalculator."""

import asyncio

import pytest

from liqdepth.config.settings import AppSettings
from liqdepth.core.errors import NoRouteError
from liqdepth.core.types import ErrorKind, ProbeDirection, QuoteResult, TokenInfo
from liqdepth.probe.engine import DepthCalculator
from liqdepth.quote.pacing import process_gate

SOL = "So11111111111111111111111111111111111111112"
USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

PRICES = {SOL: 100.0, USDC: 1.0}


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


class FlatPriceOracle:
    """Quotes SOL/USDC at a flat $100; each quote takes `latency` seconds."""

    def __init__(
        self,
        decimals: dict[str, int],
        clock: FakeClock | None = None,
        latency: float = 0.0,
        max_usd: float | None = None,
    ):
        self.decimals = decimals
        self.clock = clock
        self.latency = latency
        self.max_usd = max_usd
        self.calls = 0

    async def quote(
        self, input_mint, output_mint, raw_amount, slippage_bps, max_retries=None
    ):
        self.calls += 1
        if self.clock is not None:
            self.clock.now += self.latency

        usd = raw_amount / 10 ** self.decimals[input_mint] * PRICES[input_mint]
        if self.max_usd is not None and usd > self.max_usd:
            raise NoRouteError("Could not find any route", status_code=400)
        out = int(usd / PRICES[output_mint] * 10 ** self.decimals[output_mint])
        return QuoteResult(in_amount_raw=raw_amount, out_amount_raw=out)


class FakeCatalog:
    def __init__(self, tokens: dict[str, int] | None = None, error: bool = False):
        self.tokens = tokens or {}
        self.error = error

    async def resolve(self, mint: str) -> TokenInfo | None:
        if self.error:
            raise RuntimeError("catalog unavailable")
        if mint not in self.tokens:
            return None
        return TokenInfo(mint=mint, decimals=self.tokens[mint])


class BrokenOracle:
    async def quote(self, *args, **kwargs):
        raise RuntimeError("unexpected")


def make_settings(**overrides) -> AppSettings:
    return AppSettings(env="dev", **overrides)


@pytest.mark.asyncio
async def test_sol_usdc_sell_at_flat_price():
    decimals = {SOL: 9, USDC: 6}
    clock = FakeClock()
    calculator = DepthCalculator(
        make_settings(),
        quote_source=FlatPriceOracle(decimals),
        catalog=FakeCatalog(decimals),
        clock=clock,
        sleep=clock.sleep,
    )

    result = await calculator.calculate_depth(
        SOL, USDC, ProbeDirection.SELL, ladder=[500.0, 1_000.0, 10_000.0]
    )

    assert result.baseline_price == pytest.approx(100.0)
    assert [p.input_amount for p in result.points] == [5.0, 10.0, 100.0]
    assert [p.output_amount for p in result.points] == [500.0, 1_000.0, 10_000.0]
    assert [p.price_impact_pct for p in result.points] == [0.0, 0.0, 0.0]
    assert result.points[-1].cumulative_input_liquidity == pytest.approx(115.0)
    assert result.points[-1].cumulative_output_liquidity == pytest.approx(11_500.0)
    assert result.errors == []
    assert result.truncated is False


@pytest.mark.asyncio
async def test_direction_accepts_string():
    decimals = {SOL: 9, USDC: 6}
    calculator = DepthCalculator(
        make_settings(),
        quote_source=FlatPriceOracle(decimals),
        catalog=FakeCatalog(decimals),
    )

    result = await calculator.calculate_depth(SOL, USDC, "buy", ladder=[500.0])

    assert len(result.points) == 1
    point = result.points[0]
    # buying SOL with $500 of USDC
    assert point.input_amount == pytest.approx(5.0)
    assert point.output_amount == pytest.approx(500.0)


@pytest.mark.asyncio
async def test_partial_result_when_budget_runs_out():
    """Each quote takes 1s against a 5s budget."""
    clock = FakeClock()
    decimals = {SOL: 6, USDC: 6}
    oracle = FlatPriceOracle(decimals, clock=clock, latency=1.0)
    calculator = DepthCalculator(
        make_settings(), quote_source=oracle, clock=clock, sleep=clock.sleep
    )
    ladder = [100.0 * i for i in range(1, 11)]

    result = await calculator.calculate_depth(
        SOL, USDC, ProbeDirection.BUY, ladder=ladder, time_budget_s=5.0
    )

    assert 4 <= len(result.points) <= 6
    assert result.truncated is True
    assert any("time budget exhausted" in line for line in result.log)
    assert not any(e.kind is ErrorKind.TRANSPORT for e in result.errors)
    assert result.elapsed_ms >= 5_000


@pytest.mark.asyncio
async def test_cancel_event_stops_calculation():
    cancel = asyncio.Event()
    cancel.set()
    oracle = FlatPriceOracle({SOL: 9, USDC: 6})
    calculator = DepthCalculator(make_settings(), quote_source=oracle)

    result = await calculator.calculate_depth(
        SOL, USDC, ProbeDirection.SELL, cancel_event=cancel
    )

    assert result.points == []
    assert result.truncated is True
    assert oracle.calls == 0


@pytest.mark.asyncio
async def test_empty_ladder_returns_empty_result():
    oracle = FlatPriceOracle({SOL: 9, USDC: 6})
    calculator = DepthCalculator(make_settings(), quote_source=oracle)

    result = await calculator.calculate_depth(SOL, USDC, ProbeDirection.BUY, ladder=[])

    assert result.points == []
    assert result.errors == []
    assert oracle.calls == 0


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_probe_error():
    calculator = DepthCalculator(make_settings(), quote_source=BrokenOracle())

    result = await calculator.calculate_depth(
        SOL, USDC, ProbeDirection.SELL, ladder=[500.0]
    )

    assert result.points == []
    assert len(result.errors) == 1
    assert result.errors[0].kind is ErrorKind.TRANSPORT
    assert "unexpected" in result.errors[0].message


@pytest.mark.asyncio
async def test_no_liquidity_reports_errors():
    oracle = FlatPriceOracle({SOL: 6, USDC: 6}, max_usd=0.0)
    calculator = DepthCalculator(make_settings(), quote_source=oracle)

    result = await calculator.calculate_depth(
        SOL, USDC, ProbeDirection.BUY, ladder=[500.0, 1_000.0]
    )

    assert result.points == []
    assert result.errors
    assert all(e.kind is ErrorKind.NO_ROUTE for e in result.errors)
    assert result.baseline_price is None


@pytest.mark.asyncio
async def test_unknown_or_failing_catalog_defaults_to_six_decimals():
    oracle = FlatPriceOracle({SOL: 6, USDC: 6})

    for catalog in (FakeCatalog(), FakeCatalog(error=True), None):
        calculator = DepthCalculator(
            make_settings(), quote_source=oracle, catalog=catalog
        )
        result = await calculator.calculate_depth(
            SOL, USDC, ProbeDirection.SELL, ladder=[500.0]
        )

        assert result.points[0].raw_input_amount == 5_000_000


class SlowCatalog(FakeCatalog):
    """Each lookup advances the clock by `delay` seconds."""

    def __init__(self, tokens: dict[str, int], clock: FakeClock, delay: float):
        super().__init__(tokens)
        self.clock = clock
        self.delay = delay

    async def resolve(self, mint: str) -> TokenInfo | None:
        self.clock.now += self.delay
        return await super().resolve(mint)


class GatedOracle(FlatPriceOracle):
    """Waits on the process-wide pacing gate before every quote."""

    async def quote(self, *args, **kwargs):
        await process_gate().wait()
        return await super().quote(*args, **kwargs)


@pytest.mark.asyncio
async def test_token_lookup_time_counts_against_budget():
    decimals = {SOL: 9, USDC: 6}
    clock = FakeClock()
    oracle = FlatPriceOracle(decimals)
    calculator = DepthCalculator(
        make_settings(),
        quote_source=oracle,
        catalog=SlowCatalog(decimals, clock, delay=30.0),
        clock=clock,
        sleep=clock.sleep,
    )

    result = await calculator.calculate_depth(
        SOL, USDC, ProbeDirection.SELL, ladder=[500.0, 1_000.0], time_budget_s=10.0
    )

    assert result.truncated is True
    assert result.points == []
    assert oracle.calls == 0
    assert result.elapsed_ms == 60_000
    assert any("time budget exhausted" in line for line in result.log)


def test_concurrent_calculations_share_gate_across_event_loops():
    decimals = {SOL: 9, USDC: 6}
    gate = process_gate()
    original = gate.min_interval_s
    process_gate(0.002)

    async def run_concurrently():
        calculators = [
            DepthCalculator(
                make_settings(),
                quote_source=GatedOracle(decimals),
                catalog=FakeCatalog(decimals),
            )
            for _ in range(2)
        ]
        return await asyncio.gather(
            *(
                c.calculate_depth(SOL, USDC, ProbeDirection.SELL, ladder=[500.0, 1_000.0])
                for c in calculators
            )
        )

    try:
        for _ in range(2):
            for result in asyncio.run(run_concurrently()):
                assert [p.trade_usd_value for p in result.points] == [500.0, 1_000.0]
                assert result.errors == []
    finally:
        gate.min_interval_s = original
