"""Ranking engine - dense, deterministic rank ordering per leaderboard.

A recompute replaces the whole ranking table of one leaderboard in a single
transaction. Recomputes of the same leaderboard are serialized; different
leaderboards are independent.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.models.leaderboard import Leaderboard, LeaderboardRanking
from scoreboard.services.scoring import ScoringEngine

logger = logging.getLogger(__name__)


@dataclass
class RankingRow:
    """One ranked user produced by a recompute pass."""

    user_id: int
    rank: int
    score: Decimal
    previous_rank: int | None = None
    rank_change: int | None = None  # previous_rank - rank; positive = improved


def order_scores(scores: Iterable[tuple[int, Decimal]]) -> list[tuple[int, Decimal]]:
    """Sort by score descending; equal scores fall back to ascending user id."""
    return sorted(scores, key=lambda item: (-item[1], item[0]))


def build_rankings(
    scores: Iterable[tuple[int, Decimal]],
    previous_ranks: dict[int, int] | None = None,
) -> list[RankingRow]:
    """
    Assign ranks 1..N with no gaps and no shared numbers.

    Ties do not share a rank: the lower user id takes the lower number.
    """
    previous_ranks = previous_ranks or {}
    rows = []
    for rank, (user_id, score) in enumerate(order_scores(scores), 1):
        previous_rank = previous_ranks.get(user_id)
        rows.append(RankingRow(
            user_id=user_id,
            rank=rank,
            score=score,
            previous_rank=previous_rank,
            rank_change=previous_rank - rank if previous_rank is not None else None,
        ))
    return rows


class LeaderboardLocks:
    """Per-leaderboard mutual exclusion for recompute passes within this process.

    Locks are held weakly: an entry lives only while some recompute holds or
    waits on it, so ids that are never ranked again (or never existed) do not
    accumulate.
    """

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    def for_leaderboard(self, leaderboard_id: int) -> asyncio.Lock:
        lock = self._locks.get(leaderboard_id)
        if lock is None:
            lock = self._locks[leaderboard_id] = asyncio.Lock()
        return lock

    def __len__(self) -> int:
        return len(self._locks)


# Singleton instance
leaderboard_locks = LeaderboardLocks()


class RankingEngine:
    """Recomputes and persists leaderboard rankings."""

    def __init__(
        self,
        db: AsyncSession,
        scoring: ScoringEngine | None = None,
        locks: LeaderboardLocks | None = None,
    ):
        self.db = db
        self.scoring = scoring or ScoringEngine(db)
        self.locks = locks or leaderboard_locks

    async def rank(self, leaderboard_id: int) -> list[RankingRow]:
        """
        Recompute and persist rankings for one leaderboard.

        Scoring errors (NotFoundError, ComputeError) propagate before any row is
        touched; a failed write is rolled back. Either way the previous
        ranking stays in place.
        """
        async with self.locks.for_leaderboard(leaderboard_id):
            try:
                # Row lock serializes recomputes across processes (no-op on SQLite)
                await self.db.execute(
                    select(Leaderboard.id)
                    .where(Leaderboard.id == leaderboard_id)
                    .with_for_update()
                )
                scores = await self.scoring.compute_scores(leaderboard_id)
                previous_ranks = await self._previous_ranks(leaderboard_id)
                rows = build_rankings(scores, previous_ranks)
                version = await self._replace_rankings(leaderboard_id, rows)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                logger.error("Ranking recompute aborted for leaderboard %s", leaderboard_id)
                raise

        logger.info(
            "Recomputed leaderboard %s: %d ranked users (version %d)",
            leaderboard_id, len(rows), version,
        )
        return rows

    async def _previous_ranks(self, leaderboard_id: int) -> dict[int, int]:
        result = await self.db.execute(
            select(LeaderboardRanking.user_id, LeaderboardRanking.rank)
            .where(LeaderboardRanking.leaderboard_id == leaderboard_id)
        )
        return {row.user_id: row.rank for row in result.all()}

    async def _replace_rankings(self, leaderboard_id: int, rows: list[RankingRow]) -> int:
        """Upsert every scored user, drop rows of users no longer scored, bump the version."""
        leaderboard = await self.scoring.get_leaderboard(leaderboard_id)
        version = (leaderboard.rankings_version or 0) + 1
        calculated_at = datetime.now(timezone.utc)

        result = await self.db.execute(
            select(LeaderboardRanking).where(LeaderboardRanking.leaderboard_id == leaderboard_id)
        )
        existing = {ranking.user_id: ranking for ranking in result.scalars().all()}

        scored_user_ids = {row.user_id for row in rows}
        stale_user_ids = set(existing) - scored_user_ids
        if stale_user_ids:
            await self.db.execute(
                delete(LeaderboardRanking).where(
                    LeaderboardRanking.leaderboard_id == leaderboard_id,
                    LeaderboardRanking.user_id.in_(stale_user_ids),
                )
            )

        for row in rows:
            ranking = existing.get(row.user_id)
            if ranking is None:
                ranking = LeaderboardRanking(leaderboard_id=leaderboard_id, user_id=row.user_id)
                self.db.add(ranking)
            ranking.rank = row.rank
            ranking.score = row.score
            ranking.previous_rank = row.previous_rank
            ranking.rank_change = row.rank_change
            ranking.version = version
            ranking.calculated_at = calculated_at

        leaderboard.rankings_version = version
        leaderboard.rankings_calculated_at = calculated_at
        await self.db.flush()
        return version
