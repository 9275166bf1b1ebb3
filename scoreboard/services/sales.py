"""Sales performance reporting and sales goals."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.core.errors import NotFoundError, ValidationError
from scoreboard.models.metric import Metric, MetricType
from scoreboard.models.sales_goal import GoalPeriod, SalesGoal
from scoreboard.models.user import User, UserRole
from scoreboard.services.metrics import validate_metric_type, validate_value
from scoreboard.services.scoring import quantize
from scoreboard.services.users import require_user

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


@dataclass
class SalesTotals:
    revenue: Decimal = ZERO
    deals: Decimal = ZERO
    voice_seats: Decimal = ZERO
    weighted_score: Decimal = ZERO

    def add(self, metric_type: str, value: Decimal, weight: Decimal) -> None:
        if metric_type == MetricType.REVENUE.value:
            self.revenue += value
        elif metric_type == MetricType.DEALS.value:
            self.deals += value
        elif metric_type == MetricType.VOICE_SEATS.value:
            self.voice_seats += value
        self.weighted_score += value * weight

    def to_dict(self) -> dict[str, Decimal]:
        return {
            "revenue": quantize(self.revenue),
            "deals": quantize(self.deals),
            "voice_seats": quantize(self.voice_seats),
            "weighted_score": quantize(self.weighted_score),
        }


@dataclass
class _RepTally:
    user: User
    totals: SalesTotals = field(default_factory=SalesTotals)


def _tally(rows: Iterable[tuple[Metric, User]]) -> dict[int, _RepTally]:
    tallies: dict[int, _RepTally] = {}
    for metric, user in rows:
        tally = tallies.setdefault(user.id, _RepTally(user=user))
        tally.totals.add(metric.metric_type, metric.value, metric.weight)
    return tallies


class SalesService:
    """Service for sales rep performance and quota tracking."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Performance
    # =========================================================================

    async def get_sales_performance(
        self,
        leaderboard_id: int | None = None,
        territory: str | None = None,
    ) -> list[dict[str, Any]]:
        """Per-rep totals, highest weighted score first (ties by user id)."""
        query = (
            select(Metric, User)
            .join(User, User.id == Metric.user_id)
            .where(User.role == UserRole.SALES_REP.value)
        )
        if leaderboard_id is not None:
            query = query.where(Metric.leaderboard_id == leaderboard_id)
        if territory is not None:
            query = query.where(User.territory == territory)

        result = await self.db.execute(query)
        tallies = _tally(result.all())

        ordered = sorted(tallies.values(), key=lambda t: (-t.totals.weighted_score, t.user.id))
        return [
            {
                "user_id": t.user.id,
                "display_name": t.user.display_name,
                "territory": t.user.territory,
                **t.totals.to_dict(),
            }
            for t in ordered
        ]

    async def get_user_sales_performance(self, user_id: int) -> dict[str, Any]:
        """One user's metrics grouped by type, newest first, with totals."""
        await require_user(self.db, user_id)
        result = await self.db.execute(
            select(Metric)
            .where(Metric.user_id == user_id)
            .order_by(Metric.recorded_at.desc(), Metric.id.desc())
        )

        grouped: dict[str, list[dict[str, Any]]] = defaultdict(list)
        totals = SalesTotals()
        for metric in result.scalars().all():
            grouped[metric.metric_type].append({
                "id": metric.id,
                "value": metric.value,
                "weight": metric.weight,
                "description": metric.description,
                "recorded_at": metric.recorded_at.isoformat() if metric.recorded_at else None,
            })
            totals.add(metric.metric_type, metric.value, metric.weight)

        return {"user_id": user_id, "metrics": dict(grouped), "totals": totals.to_dict()}

    async def get_sales_analytics(self) -> dict[str, Any]:
        """Organization-wide sales totals."""
        result = await self.db.execute(
            select(Metric, User)
            .join(User, User.id == Metric.user_id)
            .where(User.role == UserRole.SALES_REP.value)
        )
        tallies = _tally(result.all())
        return self._summarize(tallies)

    async def get_territory_analytics(self, territory: str) -> dict[str, Any]:
        result = await self.db.execute(
            select(Metric, User)
            .join(User, User.id == Metric.user_id)
            .where(User.role == UserRole.SALES_REP.value, User.territory == territory)
        )
        tallies = _tally(result.all())
        return {"territory": territory, **self._summarize(tallies)}

    @staticmethod
    def _summarize(tallies: dict[int, _RepTally]) -> dict[str, Any]:
        overall = SalesTotals()
        for tally in tallies.values():
            overall.revenue += tally.totals.revenue
            overall.deals += tally.totals.deals
            overall.voice_seats += tally.totals.voice_seats
            overall.weighted_score += tally.totals.weighted_score
        return {**overall.to_dict(), "active_sales_reps": len(tallies)}

    # =========================================================================
    # Goals
    # =========================================================================

    async def create_goal(
        self,
        user_id: int,
        metric_type: str,
        target_value: Decimal | int | float | str,
        period: str,
        start_date: datetime,
        end_date: datetime,
        leaderboard_id: int | None = None,
    ) -> SalesGoal:
        metric_type = validate_metric_type(metric_type)
        target = validate_value(target_value)
        if target <= 0:
            raise ValidationError("target_value must be positive", field="target_value")
        try:
            GoalPeriod(period)
        except ValueError:
            raise ValidationError(
                f"Invalid period. Must be one of: {[p.value for p in GoalPeriod]}",
                field="period",
            )
        if end_date < start_date:
            raise ValidationError("end_date must not precede start_date", field="end_date")
        await require_user(self.db, user_id)

        goal = SalesGoal(
            user_id=user_id,
            leaderboard_id=leaderboard_id,
            metric_type=metric_type,
            target_value=target,
            period=period,
            start_date=start_date,
            end_date=end_date,
            is_active=True,
        )
        self.db.add(goal)
        await self.db.commit()
        await self.db.refresh(goal)

        logger.info("Sales goal created for user %s: %s - %s", user_id, metric_type, target)
        return goal

    async def get_goal(self, goal_id: int) -> SalesGoal:
        goal = await self.db.get(SalesGoal, goal_id)
        if goal is None:
            raise NotFoundError(f"Sales goal {goal_id} not found", goal_id=goal_id)
        return goal

    async def deactivate_goal(self, goal_id: int) -> SalesGoal:
        goal = await self.get_goal(goal_id)
        goal.is_active = False
        await self.db.commit()
        return goal

    async def get_goal_progress(self, goal_id: int) -> dict[str, Any]:
        goal = await self.get_goal(goal_id)
        return await self._progress(goal)

    async def get_user_goals_progress(self, user_id: int, active_only: bool = True) -> list[dict[str, Any]]:
        await require_user(self.db, user_id)
        query = select(SalesGoal).where(SalesGoal.user_id == user_id)
        if active_only:
            query = query.where(SalesGoal.is_active == True)  # noqa: E712
        result = await self.db.execute(query.order_by(SalesGoal.end_date, SalesGoal.id))
        return [await self._progress(goal) for goal in result.scalars().all()]

    async def _progress(self, goal: SalesGoal) -> dict[str, Any]:
        """Current value is derived from metrics inside the goal window, never stored."""
        query = select(Metric.value).where(
            Metric.user_id == goal.user_id,
            Metric.metric_type == goal.metric_type,
            Metric.recorded_at >= goal.start_date,
            Metric.recorded_at <= goal.end_date,
        )
        if goal.leaderboard_id is not None:
            query = query.where(Metric.leaderboard_id == goal.leaderboard_id)
        result = await self.db.execute(query)
        current = quantize(sum(result.scalars().all(), ZERO))

        percentage = quantize(current * HUNDRED / goal.target_value) if goal.target_value else ZERO
        return {
            "goal_id": goal.id,
            "user_id": goal.user_id,
            "metric_type": goal.metric_type,
            "period": goal.period,
            "target_value": goal.target_value,
            "current_value": current,
            "percentage": percentage,
            "attained": current >= goal.target_value,
            "is_active": goal.is_active,
            "start_date": goal.start_date.isoformat(),
            "end_date": goal.end_date.isoformat(),
        }
