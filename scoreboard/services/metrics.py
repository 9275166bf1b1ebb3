"""Metric store - append-mostly ledger of performance events.

The metric row is the durability boundary: it is committed before the
achievement pass and before notifications, and neither of those can undo it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.core.config import settings
from scoreboard.core.errors import NotFoundError, ScoreboardError, ValidationError
from scoreboard.models.leaderboard import Leaderboard
from scoreboard.models.metric import Metric, MetricType
from scoreboard.models.user import User
from scoreboard.services.achievements import AchievementEngine, GrantedAchievement
from scoreboard.services.events import EventSink, metric_recorded_event, notify
from scoreboard.services.scoring import quantize, to_decimal

logger = logging.getLogger(__name__)

# Column limits: value Numeric(12, 2), weight Numeric(5, 2)
MAX_VALUE = Decimal("9999999999.99")
MAX_WEIGHT = Decimal("999.99")
DEFAULT_WEIGHT = Decimal("1.00")


@dataclass
class MetricInput:
    """An unvalidated metric submission."""

    user_id: Any
    metric_type: Any
    value: Any
    leaderboard_id: Any = None
    weight: Any = None
    source: str | None = None
    description: str | None = None
    recorded_at: datetime | str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "MetricInput":
        """Build from a dict with snake_case or camelCase keys."""
        def pick(*keys: str) -> Any:
            for key in keys:
                if key in data:
                    return data[key]
            return None

        return cls(
            user_id=pick("user_id", "userId"),
            metric_type=pick("metric_type", "metricType"),
            value=pick("value"),
            leaderboard_id=pick("leaderboard_id", "leaderboardId"),
            weight=pick("weight"),
            source=pick("source"),
            description=pick("description"),
            recorded_at=pick("recorded_at", "recordedAt"),
        )


@dataclass
class MetricFilter:
    user_id: int | None = None
    leaderboard_id: int | None = None
    metric_type: str | None = None
    recorded_after: datetime | None = None
    recorded_before: datetime | None = None
    limit: int = 50
    offset: int = 0


@dataclass
class BulkItemError:
    index: int
    error: str  # error class name, e.g. "ValidationError"
    message: str


@dataclass
class BulkResult:
    """Outcome of a bulk submission. Successes stay committed regardless of errors."""

    successes: list[Metric] = field(default_factory=list)
    errors: list[BulkItemError] = field(default_factory=list)
    skipped: int = 0  # items left unprocessed because of the cap

    @property
    def processed(self) -> int:
        return len(self.successes) + len(self.errors)


@dataclass
class _ValidMetric:
    user: User
    leaderboard_id: int | None
    metric_type: str
    value: Decimal
    weight: Decimal
    source: str | None
    description: str | None
    recorded_at: datetime | None


def _require_int(raw: Any, field_name: str) -> int:
    if isinstance(raw, bool) or raw is None:
        raise ValidationError(f"{field_name} is required", field=field_name)
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw)
    raise ValidationError(f"{field_name} must be an integer id", field=field_name)


def validate_metric_type(raw: Any) -> str:
    try:
        return MetricType(raw).value
    except ValueError:
        raise ValidationError(
            f"Invalid metric_type {raw!r}. Must be one of: {[t.value for t in MetricType]}",
            field="metric_type",
        )


def validate_value(raw: Any) -> Decimal:
    value = quantize(to_decimal(raw, "value"))
    if abs(value) > MAX_VALUE:
        raise ValidationError(f"value exceeds {MAX_VALUE}", field="value")
    return value


def validate_weight(raw: Any) -> Decimal:
    """Weights are stored with 2 decimal places; finer input is rejected, not rounded.

    Zero and negative weights are accepted: they zero out or invert a contribution.
    """
    if raw is None:
        return DEFAULT_WEIGHT
    amount = to_decimal(raw, "weight")
    weight = quantize(amount)
    if weight != amount:
        raise ValidationError(f"weight {raw!r} has more than 2 decimal places", field="weight")
    if abs(weight) > MAX_WEIGHT:
        raise ValidationError(f"weight exceeds {MAX_WEIGHT}", field="weight")
    return weight


def validate_recorded_at(raw: Any) -> datetime | None:
    """Accept a datetime or an ISO-8601 string (a trailing "Z" means UTC)."""
    if raw is None or isinstance(raw, datetime):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            pass
    raise ValidationError(f"recorded_at must be an ISO-8601 timestamp, got {raw!r}", field="recorded_at")


class MetricStore:
    """Records, queries and administers metrics."""

    def __init__(
        self,
        db: AsyncSession,
        relay: EventSink | None = None,
        achievements: AchievementEngine | None = None,
    ):
        self.db = db
        self.relay = relay
        self.achievements = achievements or AchievementEngine(db, relay=relay)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def record(self, metric: MetricInput) -> Metric:
        """
        Persist one metric, then run the achievement pass and notify subscribers.

        Raises:
            ValidationError: malformed input
            NotFoundError: unknown user or leaderboard
        """
        valid = await self._validate(metric)
        row = Metric(
            user_id=valid.user.id,
            leaderboard_id=valid.leaderboard_id,
            metric_type=valid.metric_type,
            value=valid.value,
            weight=valid.weight,
            source=valid.source,
            description=valid.description,
        )
        if valid.recorded_at is not None:
            row.recorded_at = valid.recorded_at
        self.db.add(row)
        await self.db.commit()
        await self.db.refresh(row)

        logger.info(
            "Metric recorded: %s %s (weight %s) for user %s on leaderboard %s",
            row.metric_type, row.value, row.weight, row.user_id, row.leaderboard_id,
        )

        await notify(
            self.relay,
            metric_recorded_event(
                valid.user.id,
                valid.user.display_name,
                row.metric_type,
                row.value,
                leaderboard_id=row.leaderboard_id,
            ),
        )
        if await self._run_achievements(valid.user.id, row.metric_type, row.value) is None:
            # The rollback expired the committed row
            await self.db.refresh(row)
        return row

    async def bulk_record(
        self,
        items: Iterable[MetricInput | Mapping[str, Any]],
        max_items: int | None = None,
    ) -> BulkResult:
        """
        Record each item independently.

        Invalid items are reported as per-item errors without aborting valid
        ones. At most `max_items` items are processed; the rest are counted
        as skipped. Items committed before a cancellation stay committed.
        """
        cap = min(max_items or settings.bulk_max_items, settings.bulk_max_items)
        result = BulkResult()

        for index, item in enumerate(items):
            if result.processed >= cap:
                result.skipped += 1
                continue
            try:
                if isinstance(item, MetricInput):
                    metric = item
                elif isinstance(item, Mapping):
                    metric = MetricInput.from_mapping(item)
                else:
                    raise ValidationError("Each bulk item must be an object", index=index)
                result.successes.append(await self.record(metric))
            except (ValidationError, NotFoundError) as e:
                # Raised before anything is added to the session
                result.errors.append(BulkItemError(index=index, error=type(e).__name__, message=e.message))
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.warning("Bulk item %d failed to persist: %s", index, e)
                result.errors.append(BulkItemError(index=index, error=type(e).__name__, message="Metric could not be stored"))
                # The rollback expired the rows committed so far
                for row in result.successes:
                    await self.db.refresh(row)

        logger.info(
            "Bulk metrics: %d recorded, %d rejected, %d skipped",
            len(result.successes), len(result.errors), result.skipped,
        )
        return result

    async def update(
        self,
        metric_id: int,
        value: Any = None,
        weight: Any = None,
        description: str | None = None,
    ) -> Metric:
        """Administrative edit. Re-sweeps the owner's achievements; grants are never revoked."""
        metric = await self.get(metric_id)
        if value is not None:
            metric.value = validate_value(value)
        if weight is not None:
            metric.weight = validate_weight(weight)
        if description is not None:
            metric.description = description
        await self.db.commit()
        await self.db.refresh(metric)

        logger.info("Metric %s updated", metric_id)
        if await self._run_sweep(metric.user_id) is None:
            await self.db.refresh(metric)
        return metric

    async def delete(self, metric_id: int) -> None:
        """Administrative delete. Re-sweeps the owner's achievements; grants are never revoked."""
        metric = await self.get(metric_id)
        user_id = metric.user_id
        await self.db.delete(metric)
        await self.db.commit()

        logger.info("Metric %s deleted", metric_id)
        await self._run_sweep(user_id)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, metric_id: int) -> Metric:
        result = await self.db.execute(select(Metric).where(Metric.id == metric_id))
        metric = result.scalar_one_or_none()
        if metric is None:
            raise NotFoundError(f"Metric {metric_id} not found", metric_id=metric_id)
        return metric

    async def query(self, filters: MetricFilter | None = None) -> list[Metric]:
        """Metrics matching the filters, newest first."""
        filters = filters or MetricFilter()
        query = select(Metric)

        if filters.user_id is not None:
            query = query.where(Metric.user_id == filters.user_id)
        if filters.leaderboard_id is not None:
            query = query.where(Metric.leaderboard_id == filters.leaderboard_id)
        if filters.metric_type is not None:
            query = query.where(Metric.metric_type == validate_metric_type(filters.metric_type))
        if filters.recorded_after is not None:
            query = query.where(Metric.recorded_at >= filters.recorded_after)
        if filters.recorded_before is not None:
            query = query.where(Metric.recorded_at < filters.recorded_before)

        query = (
            query.order_by(Metric.recorded_at.desc(), Metric.id.desc())
            .offset(filters.offset)
            .limit(filters.limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _validate(self, metric: MetricInput) -> _ValidMetric:
        user_id = _require_int(metric.user_id, "user_id")
        metric_type = validate_metric_type(metric.metric_type)
        value = validate_value(metric.value)
        weight = validate_weight(metric.weight)
        recorded_at = validate_recorded_at(metric.recorded_at)

        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", user_id=user_id)

        leaderboard_id = None
        if metric.leaderboard_id is not None:
            leaderboard_id = _require_int(metric.leaderboard_id, "leaderboard_id")
            if await self.db.get(Leaderboard, leaderboard_id) is None:
                raise NotFoundError(f"Leaderboard {leaderboard_id} not found", leaderboard_id=leaderboard_id)

        return _ValidMetric(
            user=user,
            leaderboard_id=leaderboard_id,
            metric_type=metric_type,
            value=value,
            weight=weight,
            source=metric.source,
            description=metric.description,
            recorded_at=recorded_at,
        )

    async def _run_achievements(self, user_id: int, metric_type: str, value: Decimal) -> list[GrantedAchievement] | None:
        try:
            return await self.achievements.evaluate(user_id, metric_type, value)
        except (SQLAlchemyError, ScoreboardError):
            # The metric is already committed; the next sweep picks up missed grants
            await self.db.rollback()
            logger.exception("Achievement evaluation failed for user %s", user_id)
            return None

    async def _run_sweep(self, user_id: int) -> list[GrantedAchievement] | None:
        try:
            return await self.achievements.update_user_achievements(user_id)
        except NotFoundError:
            return []
        except (SQLAlchemyError, ScoreboardError):
            await self.db.rollback()
            logger.exception("Achievement sweep failed for user %s", user_id)
            return None
