"""Depth snapshot history using SQLite."""

from datetime import UTC, datetime, timedelta
from typing import Any

import aiosqlite
import structlog
from pydantic import ValidationError

from ..core.interfaces import SnapshotSink
from ..core.types import DepthResult, DepthSnapshot, ProbeDirection, TokenPair

logger = structlog.get_logger(__name__)


def summarize_depth(
    result: DepthResult,
    pair: TokenPair,
    direction: ProbeDirection,
    ts: datetime | None = None,
) -> DepthSnapshot:
    """Build a storable summary of a depth result."""
    return DepthSnapshot(
        input_mint=pair.input.mint,
        output_mint=pair.output.mint,
        direction=direction,
        baseline_price=result.baseline_price,
        point_count=len(result.points),
        error_count=len(result.errors),
        max_trade_usd=result.max_trade_usd,
        max_price_impact_pct=max(
            (p.price_impact_pct for p in result.points), default=0.0
        ),
        ts=ts or datetime.now(UTC),
        result=result,
    )


class SQLiteSnapshotStore(SnapshotSink):
    """SQLite-based depth snapshot history."""

    def __init__(
        self, db_path: str = "liqdepth.sqlite", retention_hours: int = 168
    ) -> None:
        """Initialize snapshot store.

        Args:
            db_path: Path to SQLite database file
            retention_hours: Snapshots older than this are pruned on save
        """
        self.db_path = db_path
        self.retention_hours = retention_hours
        logger.info(
            "Snapshot store initialized", db_path=db_path, retention_hours=retention_hours
        )

    async def initialize(self) -> None:
        """Initialize database tables."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS depth_snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    input_mint TEXT NOT NULL,
                    output_mint TEXT NOT NULL,
                    direction TEXT NOT NULL,
                    max_trade_usd REAL NOT NULL,
                    ts REAL NOT NULL,
                    payload TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_depth_snapshots_pair
                ON depth_snapshots(input_mint, output_mint)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_depth_snapshots_ts
                ON depth_snapshots(ts)
            """)

            await db.commit()

        logger.info("Database tables initialized")

    async def save_snapshot(self, snapshot: DepthSnapshot) -> int:
        """Persist a snapshot and prune expired history.

        Returns:
            Snapshot ID
        """
        cutoff = (
            datetime.now(UTC) - timedelta(hours=self.retention_hours)
        ).timestamp()

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO depth_snapshots
                    (input_mint, output_mint, direction, max_trade_usd, ts, payload)
                VALUES (?, ?, ?, ?, ?, ?)
            """,
                (
                    snapshot.input_mint,
                    snapshot.output_mint,
                    snapshot.direction.value,
                    snapshot.max_trade_usd,
                    snapshot.ts.timestamp(),
                    snapshot.model_dump_json(),
                ),
            )
            snapshot_id = cursor.lastrowid

            pruned = await db.execute(
                "DELETE FROM depth_snapshots WHERE ts <= ?", (cutoff,)
            )
            await db.commit()

        logger.info(
            "Snapshot saved",
            snapshot_id=snapshot_id,
            input_mint=snapshot.input_mint,
            output_mint=snapshot.output_mint,
            direction=snapshot.direction.value,
            pruned=pruned.rowcount,
        )
        return snapshot_id

    @staticmethod
    def _decode(rows: list[Any]) -> list[DepthSnapshot]:
        snapshots = []
        for row in rows:
            try:
                snapshots.append(DepthSnapshot.model_validate_json(row["payload"]))
            except ValidationError as e:
                logger.error("Failed to decode snapshot", id=row["id"], error=str(e))
        return snapshots

    async def latest_snapshots(self) -> list[DepthSnapshot]:
        """Newest snapshot for each (input, output, direction) combination."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row

            async with db.execute("""
                SELECT s.id, s.payload
                FROM depth_snapshots s
                JOIN (
                    SELECT input_mint, output_mint, direction, MAX(ts) AS ts
                    FROM depth_snapshots
                    GROUP BY input_mint, output_mint, direction
                ) latest
                ON s.input_mint = latest.input_mint
                    AND s.output_mint = latest.output_mint
                    AND s.direction = latest.direction
                    AND s.ts = latest.ts
                ORDER BY s.ts DESC
            """) as cursor:
                rows = await cursor.fetchall()

        return self._decode(rows)

    async def history(
        self, input_mint: str, output_mint: str, hours: float = 24
    ) -> list[DepthSnapshot]:
        """Snapshots for a pair within the last `hours`, oldest first."""
        cutoff = (datetime.now(UTC) - timedelta(hours=hours)).timestamp()

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row

            async with db.execute(
                """
                SELECT id, payload FROM depth_snapshots
                WHERE input_mint = ? AND output_mint = ? AND ts > ?
                ORDER BY ts ASC
            """,
                (input_mint, output_mint, cutoff),
            ) as cursor:
                rows = await cursor.fetchall()

        snapshots = self._decode(rows)
        logger.debug(
            "Loaded snapshot history",
            input_mint=input_mint,
            output_mint=output_mint,
            count=len(snapshots),
        )
        return snapshots

    async def statistics(self) -> dict[str, Any]:
        """Snapshot count, time span and number of tracked pairs."""
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("""
                SELECT COUNT(*), MIN(ts), MAX(ts),
                       COUNT(DISTINCT input_mint || ':' || output_mint)
                FROM depth_snapshots
            """) as cursor:
                total, oldest, newest, pairs = await cursor.fetchone()

        def _iso(ts: float | None) -> str | None:
            if ts is None:
                return None
            return datetime.fromtimestamp(ts, tz=UTC).isoformat()

        return {
            "total_snapshots": total,
            "oldest_snapshot": _iso(oldest),
            "newest_snapshot": _iso(newest),
            "pairs_tracked": pairs,
        }

    async def clear(self) -> None:
        """Delete all snapshots."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM depth_snapshots")
            await db.commit()

        logger.info("Cleared all snapshots")

    async def close(self) -> None:
        """Close storage (cleanup if needed)."""
        logger.info("Storage closed")

    async def __aenter__(self):
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
