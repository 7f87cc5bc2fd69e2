"""Core interfaces for the depth prober."""

from typing import Protocol, runtime_checkable

from .types import DepthSnapshot, QuoteResult, TokenInfo


@runtime_checkable
class QuoteSource(Protocol):
    """Single-point swap quote oracle."""

    async def quote(
        self,
        input_mint: str,
        output_mint: str,
        raw_amount: int,
        slippage_bps: int,
        max_retries: int | None = None,
    ) -> QuoteResult:
        """Quote an exact raw input amount."""
        ...


class TokenCatalog(Protocol):
    """Token metadata lookup."""

    async def resolve(self, mint: str) -> TokenInfo | None:
        """Resolve a mint to its metadata, or None if unknown."""
        ...


class SnapshotSink(Protocol):
    """Destination for depth summaries."""

    async def save_snapshot(self, snapshot: DepthSnapshot) -> int:
        """Persist a snapshot and return its identifier."""
        ...
