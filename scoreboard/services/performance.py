"""Inbound boundary of the scoring core.

Routing code calls these after its own auth/role checks.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.models.metric import Metric
from scoreboard.services.achievements import AchievementEngine
from scoreboard.services.events import EventSink, event_relay
from scoreboard.services.metrics import BulkResult, MetricInput, MetricStore
from scoreboard.services.ranking import LeaderboardLocks, RankingEngine
from scoreboard.services.scoring import ScoringEngine


@dataclass
class RecalculationResult:
    leaderboard_id: int
    ranked_count: int
    version: int | None
    calculated_at: datetime | None


class PerformanceService:
    """Wires metric store, achievement, scoring and ranking engines to one session."""

    def __init__(
        self,
        db: AsyncSession,
        relay: EventSink | None = event_relay,
        locks: LeaderboardLocks | None = None,
    ):
        self.db = db
        self.achievements = AchievementEngine(db, relay=relay)
        self.metrics = MetricStore(db, relay=relay, achievements=self.achievements)
        self.scoring = ScoringEngine(db)
        self.ranking = RankingEngine(db, scoring=self.scoring, locks=locks)

    async def submit_metric(
        self,
        user_id: int,
        metric_type: str,
        value: Decimal | int | float | str,
        leaderboard_id: int | None = None,
        weight: Decimal | int | float | str | None = None,
        source: str | None = None,
        description: str | None = None,
    ) -> Metric:
        """Record a metric. Recompute is not triggered; call recalculate_leaderboard for that."""
        return await self.metrics.record(MetricInput(
            user_id=user_id,
            metric_type=metric_type,
            value=value,
            leaderboard_id=leaderboard_id,
            weight=weight,
            source=source,
            description=description,
        ))

    async def submit_metrics(
        self,
        items: Iterable[MetricInput | Mapping[str, Any]],
        max_items: int | None = None,
    ) -> BulkResult:
        return await self.metrics.bulk_record(items, max_items=max_items)

    async def recalculate_leaderboard(self, leaderboard_id: int) -> RecalculationResult:
        """
        Recompute and persist the rankings of one leaderboard.

        Raises:
            NotFoundError: unknown leaderboard
            ComputeError: corrupt leaderboard settings; previous rankings are kept
        """
        rows = await self.ranking.rank(leaderboard_id)
        leaderboard = await self.scoring.get_leaderboard(leaderboard_id)
        return RecalculationResult(
            leaderboard_id=leaderboard_id,
            ranked_count=len(rows),
            version=leaderboard.rankings_version,
            calculated_at=leaderboard.rankings_calculated_at,
        )
