"""Jupiter token list lookup with caching and built-in fallback tokens."""

import asyncio
import time
from collections.abc import Callable
from typing import Any

import httpx
import structlog

from ..core.interfaces import TokenCatalog
from ..core.types import TokenInfo

logger = structlog.get_logger(__name__)

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USX_MINT = "6FrrzDk5mQARGc1TDYoyVnSyRdds1t4PbtohCD6p3tgG"

FALLBACK_TOKENS = (
    TokenInfo(mint=SOL_MINT, symbol="SOL", name="Solana", decimals=9),
    TokenInfo(mint=USDC_MINT, symbol="USDC", name="USD Coin", decimals=6),
    TokenInfo(mint=USX_MINT, symbol="USX", name="USX", decimals=6),
    TokenInfo(
        mint="Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",
        symbol="USDT",
        name="Tether USD",
        decimals=6,
    ),
    TokenInfo(
        mint="mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So",
        symbol="mSOL",
        name="Marinade SOL",
        decimals=9,
    ),
    TokenInfo(
        mint="7vfCXTUXx5WJV5JADk17DUJ4ksgau7utNKj4b963voxs",
        symbol="ETH",
        name="Ethereum (Wormhole)",
        decimals=8,
    ),
    TokenInfo(
        mint="DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263",
        symbol="BONK",
        name="Bonk",
        decimals=5,
    ),
    TokenInfo(
        mint="EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm",
        symbol="WIF",
        name="dogwifhat",
        decimals=6,
    ),
    TokenInfo(
        mint="4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R",
        symbol="RAY",
        name="Raydium",
        decimals=6,
    ),
    TokenInfo(
        mint="JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN",
        symbol="JUP",
        name="Jupiter",
        decimals=6,
    ),
    TokenInfo(
        mint="9n4nbM75f5Ui33ZbPYXn59EwSgE8CGsHtAeTH5YFeJ9E",
        symbol="BTC",
        name="Bitcoin (Wormhole)",
        decimals=8,
    ),
)

# Fallback entries that override whatever the remote list says
PINNED_MINTS = frozenset({SOL_MINT, USDC_MINT, USX_MINT})

# A Jupiter list at least this long is considered complete
MIN_COMPLETE_LIST = 50


class TTLCache:
    """Small TTL cache keyed by string."""

    def __init__(
        self, ttl: float = 3600, clock: Callable[[], float] = time.monotonic
    ) -> None:
        """Initialize the cache.

        Args:
            ttl: Time to live in seconds
            clock: Time source
        """
        self.ttl = ttl
        self._clock = clock
        self.cache: dict[str, tuple[Any, float]] = {}

    def get(self, key: str) -> Any | None:
        if key not in self.cache:
            return None

        value, stored_at = self.cache[key]
        if self._clock() - stored_at > self.ttl:
            del self.cache[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self.cache[key] = (value, self._clock())

    def clear(self) -> None:
        self.cache.clear()


def _token_entries(payload: Any) -> list[dict[str, Any]]:
    """Flatten the token list shapes seen across endpoints."""
    if isinstance(payload, dict):
        if isinstance(payload.get("tokens"), list):
            payload = payload["tokens"]
        else:
            payload = list(payload.values())
    if not isinstance(payload, list):
        return []
    return [entry for entry in payload if isinstance(entry, dict)]


def normalize_token(entry: dict[str, Any]) -> TokenInfo | None:
    """Map a raw token list entry to TokenInfo.

    Returns:
        TokenInfo, or None when the entry has no address or symbol
    """
    mint = entry.get("address") or entry.get("mintAddress") or entry.get("mint")
    symbol = entry.get("symbol") or ""
    if not mint or not symbol:
        return None

    decimals = entry.get("decimals")
    if decimals is None:
        decimals = 9 if mint == SOL_MINT or symbol == "SOL" else 6

    return TokenInfo(
        mint=mint,
        symbol=symbol,
        name=entry.get("name") or symbol,
        decimals=decimals,
    )


class JupiterTokenCatalog(TokenCatalog):
    """Token catalog backed by the Jupiter token list endpoints."""

    def __init__(
        self,
        urls: list[str],
        api_key: str | None = None,
        cache_ttl_s: float = 3600,
        request_timeout_s: float = 15.0,
        session: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the catalog.

        Args:
            urls: Token list endpoints, tried in order
            api_key: Optional API key sent to jup.ag endpoints
            cache_ttl_s: How long a loaded list is reused
            request_timeout_s: Per-request timeout
            session: Optional HTTP session
            clock: Time source for the cache
        """
        self.urls = list(urls)
        self.api_key = api_key
        self.request_timeout_s = request_timeout_s
        self.cache = TTLCache(ttl=cache_ttl_s, clock=clock)
        self._lock = asyncio.Lock()

        self._session = session or httpx.AsyncClient(timeout=request_timeout_s)
        self._owns_session = session is None

    async def close(self) -> None:
        if self._owns_session:
            await self._session.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _headers(self, url: str) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key and "jup.ag" in url:
            headers["x-api-key"] = self.api_key
        return headers

    async def _fetch(self, url: str) -> list[dict[str, Any]]:
        try:
            response = await self._session.get(
                url, headers=self._headers(url), timeout=self.request_timeout_s
            )
            response.raise_for_status()
            return _token_entries(response.json())
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Token list endpoint rejected request",
                url=url,
                status_code=e.response.status_code,
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Token list endpoint failed", url=url, error=str(e))
        return []

    async def _load(self) -> dict[str, TokenInfo]:
        tokens: dict[str, TokenInfo] = {}
        for url in self.urls:
            entries = await self._fetch(url)
            if not entries:
                continue

            added = 0
            for entry in entries:
                token = normalize_token(entry)
                if token is not None and token.mint not in tokens:
                    tokens[token.mint] = token
                    added += 1
            logger.info("Loaded token list", url=url, entries=len(entries), added=added)

            if "jup.ag" in url and len(entries) >= MIN_COMPLETE_LIST:
                break

        if not tokens:
            logger.warning("No tokens loaded from any endpoint, using fallback list")

        for token in FALLBACK_TOKENS:
            if token.mint in PINNED_MINTS or token.mint not in tokens:
                tokens[token.mint] = token
        return tokens

    async def tokens(self) -> dict[str, TokenInfo]:
        """Return the token map, loading it when the cache is cold."""
        async with self._lock:
            cached = self.cache.get("tokens")
            if cached is not None:
                return cached
            tokens = await self._load()
            self.cache.set("tokens", tokens)
            logger.info("Cached token list", tokens=len(tokens))
            return tokens

    async def resolve(self, mint: str) -> TokenInfo | None:
        return (await self.tokens()).get(mint)

    async def search(self, query: str, limit: int = 20) -> list[TokenInfo]:
        """Case-insensitive match on symbol, name or mint prefix."""
        needle = query.strip().lower()
        if not needle:
            return []
        matches = [
            token
            for token in (await self.tokens()).values()
            if needle in token.symbol.lower()
            or needle in token.name.lower()
            or token.mint.lower().startswith(needle)
        ]
        return matches[:limit]
