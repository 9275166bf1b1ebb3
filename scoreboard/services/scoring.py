"""Scoring engine - per-user aggregate scores for a leaderboard.

Aggregation rules by leaderboard type:
  - employee: sum(value) over `points` metrics
  - sales:    sum(value * weight) over every metric, whatever its type;
              weight is the unit conversion between revenue, deals and seats
  - mixed:    employeeWeight * points score + salesWeight * weighted score

All arithmetic is Decimal; scores are quantized to cents once, at the end.
"""

import json
import logging
import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, NamedTuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.core.errors import ComputeError, NotFoundError, ValidationError
from scoreboard.models.leaderboard import Leaderboard, LeaderboardType
from scoreboard.models.metric import Metric, MetricType

logger = logging.getLogger(__name__)


# =============================================================================
# DECIMAL HELPERS
# =============================================================================

CENT = Decimal("0.01")
DEFAULT_MIXED_WEIGHT = Decimal("0.5")


def quantize(amount: Decimal) -> Decimal:
    """Round to the stored scale (2 places, half-up)."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(raw: Any, field_name: str) -> Decimal:
    """Convert user input to Decimal without passing through binary float formatting.

    Raises:
        ValidationError: missing, boolean, non-numeric or non-finite input
    """
    if raw is None or isinstance(raw, bool):
        raise ValidationError(f"{field_name} must be a number", field=field_name)
    if isinstance(raw, Decimal):
        amount = raw
    elif isinstance(raw, int):
        amount = Decimal(raw)
    elif isinstance(raw, float):
        if not math.isfinite(raw):
            raise ValidationError(f"{field_name} must be finite", field=field_name)
        # repr() gives the shortest round-tripping text: 0.1 -> "0.1", not 0.1000000000000000055...
        amount = Decimal(repr(raw))
    elif isinstance(raw, str):
        try:
            amount = Decimal(raw.strip())
        except InvalidOperation:
            raise ValidationError(f"{field_name} must be numeric, got {raw!r}", field=field_name)
    else:
        raise ValidationError(f"{field_name} must be a number", field=field_name)

    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be finite", field=field_name)
    return amount


# =============================================================================
# LEADERBOARD SETTINGS
# =============================================================================

@dataclass(frozen=True)
class LeaderboardSettings:
    """Parsed leaderboard `settings` JSON."""

    employee_weight: Decimal = DEFAULT_MIXED_WEIGHT
    sales_weight: Decimal = DEFAULT_MIXED_WEIGHT
    display_count: int | None = None
    update_frequency: str | None = None


def _read_weight(data: dict[str, Any], *keys: str) -> Decimal:
    for key in keys:
        if key in data and data[key] is not None:
            try:
                return to_decimal(data[key], key)
            except ValidationError as e:
                raise ComputeError(f"Invalid leaderboard setting: {e.message}", setting=key)
    return DEFAULT_MIXED_WEIGHT


def parse_leaderboard_settings(raw: str | dict | None) -> LeaderboardSettings:
    """Parse the settings blob stored on a leaderboard.

    Raises:
        ComputeError: unparseable JSON, a non-object document, or non-numeric weights
    """
    if raw is None or raw == "":
        return LeaderboardSettings()

    if isinstance(raw, dict):
        data = raw
    else:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ComputeError(f"Leaderboard settings are not valid JSON: {e}")

    if data is None:
        return LeaderboardSettings()
    if not isinstance(data, dict):
        raise ComputeError("Leaderboard settings must be a JSON object")

    display_count = data.get("displayCount", data.get("display_count"))
    if display_count is not None and (isinstance(display_count, bool) or not isinstance(display_count, int)):
        raise ComputeError("displayCount must be an integer", setting="displayCount")

    return LeaderboardSettings(
        employee_weight=_read_weight(data, "employeeWeight", "employee_weight"),
        sales_weight=_read_weight(data, "salesWeight", "sales_weight"),
        display_count=display_count,
        update_frequency=data.get("updateFrequency", data.get("update_frequency")),
    )


# =============================================================================
# AGGREGATION (pure)
# =============================================================================

class ScoredMetric(NamedTuple):
    """The columns of a metric that scoring needs."""

    user_id: int
    metric_type: str
    value: Decimal
    weight: Decimal


def aggregate_scores(
    leaderboard_type: str,
    metrics: Iterable[ScoredMetric],
    board_settings: LeaderboardSettings | None = None,
) -> dict[int, Decimal]:
    """
    Aggregate metrics into per-user scores.

    Users without a matching metric are absent from the result (unranked),
    never present with a zero score.
    """
    board_settings = board_settings or LeaderboardSettings()
    try:
        board_type = LeaderboardType(leaderboard_type)
    except ValueError:
        raise ComputeError(f"Unknown leaderboard type: {leaderboard_type!r}")

    points: dict[int, Decimal] = {}
    weighted: dict[int, Decimal] = {}

    for metric in metrics:
        if metric.metric_type == MetricType.POINTS.value:
            points[metric.user_id] = points.get(metric.user_id, Decimal(0)) + metric.value
        weighted[metric.user_id] = (
            weighted.get(metric.user_id, Decimal(0)) + metric.value * metric.weight
        )

    if board_type == LeaderboardType.EMPLOYEE:
        raw_scores = points
    elif board_type == LeaderboardType.SALES:
        raw_scores = weighted
    else:
        raw_scores = {
            user_id: (
                board_settings.employee_weight * points.get(user_id, Decimal(0))
                + board_settings.sales_weight * weighted[user_id]
            )
            for user_id in weighted
        }

    return {user_id: quantize(score) for user_id, score in raw_scores.items()}


# =============================================================================
# SCORING ENGINE
# =============================================================================

class ScoringEngine:
    """Computes per-user scores for a leaderboard from its metrics."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_leaderboard(self, leaderboard_id: int) -> Leaderboard:
        result = await self.db.execute(
            select(Leaderboard).where(Leaderboard.id == leaderboard_id)
        )
        leaderboard = result.scalar_one_or_none()
        if leaderboard is None:
            raise NotFoundError(f"Leaderboard {leaderboard_id} not found", leaderboard_id=leaderboard_id)
        return leaderboard

    async def load_metrics(self, leaderboard: Leaderboard) -> list[ScoredMetric]:
        """Every metric scoped to the leaderboard. start_date/end_date are informational."""
        query = select(
            Metric.user_id,
            Metric.metric_type,
            Metric.value,
            Metric.weight,
        ).where(Metric.leaderboard_id == leaderboard.id)

        if leaderboard.type == LeaderboardType.EMPLOYEE.value:
            query = query.where(Metric.metric_type == MetricType.POINTS.value)

        result = await self.db.execute(query)
        return [
            ScoredMetric(
                user_id=row.user_id,
                metric_type=row.metric_type,
                value=Decimal(row.value),
                weight=Decimal(row.weight if row.weight is not None else 1),
            )
            for row in result.all()
        ]

    async def compute_scores(self, leaderboard_id: int) -> list[tuple[int, Decimal]]:
        """
        Compute (user_id, score) pairs for a leaderboard.

        Raises:
            NotFoundError: unknown leaderboard
            ComputeError: corrupt settings or unknown leaderboard type
        """
        leaderboard = await self.get_leaderboard(leaderboard_id)
        board_settings = parse_leaderboard_settings(leaderboard.settings)
        metrics = await self.load_metrics(leaderboard)
        scores = aggregate_scores(leaderboard.type, metrics, board_settings)

        logger.debug(
            "Scored leaderboard %s (%s): %d metrics, %d users",
            leaderboard_id, leaderboard.type, len(metrics), len(scores),
        )
        return list(scores.items())
