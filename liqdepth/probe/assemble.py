"""Final ordering and cumulative liquidity for a depth curve."""

import math
from collections.abc import Iterable

from ..core.types import DepthPoint, DepthResult, ProbeError


def _is_valid(point: DepthPoint) -> bool:
    return (
        math.isfinite(point.input_amount)
        and point.input_amount > 0
        and math.isfinite(point.execution_price)
        and point.execution_price > 0
    )


def assemble_depth(
    points: Iterable[DepthPoint],
    baseline_price: float | None,
    *,
    errors: Iterable[ProbeError] = (),
    log: Iterable[str] = (),
    elapsed_ms: int = 0,
    truncated: bool = False,
) -> DepthResult:
    """Build a DepthResult from raw points.

    Points are stable-sorted by USD size and cumulative fields recomputed
    from scratch, so assembling an assembled result is a no-op. Invalid
    points carry the previous running totals forward.
    """
    ordered = sorted(points, key=lambda p: p.trade_usd_value)

    if baseline_price is None and ordered:
        baseline_price = ordered[0].execution_price

    cum_in = 0.0
    cum_out = 0.0
    assembled: list[DepthPoint] = []
    for point in ordered:
        if _is_valid(point):
            cum_in += point.input_amount
            cum_out += point.output_amount
        assembled.append(
            point.model_copy(
                update={
                    "cumulative_input_liquidity": cum_in,
                    "cumulative_output_liquidity": cum_out,
                }
            )
        )

    return DepthResult(
        points=assembled,
        errors=list(errors),
        baseline_price=baseline_price,
        elapsed_ms=elapsed_ms,
        truncated=truncated,
        log=list(log),
    )
