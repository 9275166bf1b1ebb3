"""Achievement engine - declarative criteria, exactly-once grants."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, ClassVar

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.core.errors import ConflictError, NotFoundError, ValidationError
from scoreboard.models.achievement import Achievement, AchievementType, UserAchievement
from scoreboard.models.metric import Metric, MetricType
from scoreboard.models.user import User
from scoreboard.services.events import EventSink, achievement_granted_event, notify
from scoreboard.services.scoring import to_decimal

logger = logging.getLogger(__name__)


# =============================================================================
# CRITERIA
# =============================================================================

@dataclass(frozen=True)
class MetricTypeFilter:
    """Only events of this metric type are considered."""

    kind: ClassVar[str] = "metric_type"
    metric_type: str

    def to_json_value(self) -> str:
        return self.metric_type


@dataclass(frozen=True)
class MinValue:
    """The triggering event alone must reach the threshold."""

    kind: ClassVar[str] = "min_value"
    threshold: Decimal

    def to_json_value(self) -> str:
        return str(self.threshold)


@dataclass(frozen=True)
class CumulativeThreshold:
    """The user's lifetime total for the metric type must reach the threshold."""

    kind: ClassVar[str] = "total_required"
    threshold: Decimal

    def to_json_value(self) -> str:
        return str(self.threshold)


Predicate = MetricTypeFilter | MinValue | CumulativeThreshold

_KEY_ALIASES = {
    "metricType": MetricTypeFilter.kind,
    "metric_type": MetricTypeFilter.kind,
    "minValue": MinValue.kind,
    "min_value": MinValue.kind,
    "totalRequired": CumulativeThreshold.kind,
    "total_required": CumulativeThreshold.kind,
}


@dataclass(frozen=True)
class AchievementCriteria:
    """Validated criteria. Predicates are checked in a fixed order: type, min value, total."""

    type_filter: MetricTypeFilter | None = None
    min_value: MinValue | None = None
    cumulative: CumulativeThreshold | None = None

    @property
    def predicates(self) -> list[Predicate]:
        return [p for p in (self.type_filter, self.min_value, self.cumulative) if p is not None]

    def accepts_event(self, metric_type: str, value: Decimal) -> bool:
        """Single-event checks; the cumulative check needs history and is done by the engine."""
        if self.type_filter is not None and self.type_filter.metric_type != metric_type:
            return False
        if self.min_value is not None and value < self.min_value.threshold:
            return False
        return True

    def total_metric_type(self, triggering_type: str) -> str:
        """Metric type summed for the cumulative check."""
        if self.type_filter is not None:
            return self.type_filter.metric_type
        return triggering_type

    def to_dict(self) -> dict[str, str]:
        return {p.kind: p.to_json_value() for p in self.predicates}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)


def parse_criteria(raw: "AchievementCriteria | dict | str | None") -> AchievementCriteria:
    """
    Validate criteria from a JSON document or dict.

    Accepts camelCase (metricType, minValue, totalRequired) or snake_case keys.

    Raises:
        ValidationError: unknown keys, unknown metric type, non-numeric thresholds
    """
    if isinstance(raw, AchievementCriteria):
        return raw
    if raw is None or raw == "":
        return AchievementCriteria()
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ValidationError(f"Criteria are not valid JSON: {e}", field="criteria")
        if raw is None:
            return AchievementCriteria()
    if not isinstance(raw, dict):
        raise ValidationError("Criteria must be a JSON object", field="criteria")

    values: dict[str, Any] = {}
    for key, value in raw.items():
        kind = _KEY_ALIASES.get(key)
        if kind is None:
            raise ValidationError(
                f"Unknown criteria key {key!r}. Must be one of: metricType, minValue, totalRequired",
                field="criteria",
            )
        if kind in values:
            raise ValidationError(f"Duplicate criteria key {key!r}", field="criteria")
        if value is not None:
            values[kind] = value

    type_filter = None
    if MetricTypeFilter.kind in values:
        try:
            metric_type = MetricType(values[MetricTypeFilter.kind])
        except ValueError:
            raise ValidationError(
                f"Invalid metricType. Must be one of: {[t.value for t in MetricType]}",
                field="criteria",
            )
        type_filter = MetricTypeFilter(metric_type.value)

    min_value = None
    if MinValue.kind in values:
        min_value = MinValue(to_decimal(values[MinValue.kind], "minValue"))

    cumulative = None
    if CumulativeThreshold.kind in values:
        cumulative = CumulativeThreshold(to_decimal(values[CumulativeThreshold.kind], "totalRequired"))

    return AchievementCriteria(type_filter=type_filter, min_value=min_value, cumulative=cumulative)


# =============================================================================
# ACHIEVEMENT ENGINE
# =============================================================================

@dataclass
class GrantedAchievement:
    """A grant that did not exist before this evaluation."""

    user_id: int
    achievement_id: int
    name: str
    points_value: int
    earned_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "achievement_id": self.achievement_id,
            "name": self.name,
            "points_value": self.points_value,
            "earned_at": self.earned_at.isoformat(),
        }


class AchievementEngine:
    """Evaluates achievement criteria after metric writes and grants awards once."""

    def __init__(self, db: AsyncSession, relay: EventSink | None = None):
        self.db = db
        self.relay = relay

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    async def evaluate(
        self,
        user_id: int,
        metric_type: str,
        value: Decimal | int | float | str,
    ) -> list[GrantedAchievement]:
        """Evaluate all active achievements against one metric event and commit new grants."""
        user = await self._get_user(user_id)
        granted = await self._evaluate(user_id, metric_type, to_decimal(value, "value"))
        await self.db.commit()
        await self._announce(user, granted)
        return granted

    async def update_user_achievements(self, user_id: int) -> list[GrantedAchievement]:
        """
        Re-run evaluation for every historical metric of a user.

        Used after metric edits/deletes. Grants are never revoked. Cost is
        O(user's metric history) per call.
        """
        user = await self._get_user(user_id)
        result = await self.db.execute(
            select(Metric.metric_type, Metric.value)
            .where(Metric.user_id == user_id)
            .order_by(Metric.recorded_at, Metric.id)
        )
        history = result.all()

        granted: list[GrantedAchievement] = []
        for row in history:
            granted.extend(await self._evaluate(user_id, row.metric_type, Decimal(row.value)))
        await self.db.commit()

        if granted:
            logger.info("Sweep for user %s granted %d achievements", user_id, len(granted))
        await self._announce(user, granted)
        return granted

    async def _evaluate(self, user_id: int, metric_type: str, value: Decimal) -> list[GrantedAchievement]:
        if metric_type not in {t.value for t in MetricType}:
            raise ValidationError(
                f"Invalid metric_type. Must be one of: {[t.value for t in MetricType]}",
                field="metric_type",
            )

        already_granted = await self._granted_ids(user_id)
        totals: dict[str, Decimal] = {}
        granted: list[GrantedAchievement] = []

        for achievement, criteria in await self._active_catalog():
            if achievement.id in already_granted:
                continue
            if not criteria.accepts_event(metric_type, value):
                continue
            if criteria.cumulative is not None:
                total_type = criteria.total_metric_type(metric_type)
                if total_type not in totals:
                    totals[total_type] = await self._user_total(user_id, total_type)
                if totals[total_type] < criteria.cumulative.threshold:
                    continue

            grant = await self._grant(user_id, achievement)
            if grant is not None:
                granted.append(grant)

        return granted

    async def _active_catalog(self) -> list[tuple[Achievement, AchievementCriteria]]:
        result = await self.db.execute(
            select(Achievement).where(Achievement.is_active == True).order_by(Achievement.id)  # noqa: E712
        )
        catalog = []
        for achievement in result.scalars().all():
            try:
                catalog.append((achievement, parse_criteria(achievement.criteria)))
            except ValidationError as e:
                # Rows written before criteria validation existed
                logger.warning("Skipping achievement %s with invalid criteria: %s", achievement.id, e)
        return catalog

    async def _granted_ids(self, user_id: int) -> set[int]:
        result = await self.db.execute(
            select(UserAchievement.achievement_id).where(UserAchievement.user_id == user_id)
        )
        return set(result.scalars().all())

    async def _user_total(self, user_id: int, metric_type: str) -> Decimal:
        result = await self.db.execute(
            select(Metric.value).where(
                Metric.user_id == user_id,
                Metric.metric_type == metric_type,
            )
        )
        return sum((Decimal(v) for v in result.scalars().all()), Decimal(0))

    # -------------------------------------------------------------------------
    # Granting
    # -------------------------------------------------------------------------

    async def _grant(self, user_id: int, achievement: Achievement) -> GrantedAchievement | None:
        """Insert the grant; an existing grant is a silent no-op."""
        try:
            earned_at = await self._insert_grant(user_id, achievement.id)
        except ConflictError:
            logger.debug("Achievement %s already granted to user %s", achievement.id, user_id)
            return None

        logger.info("Achievement granted: %s to user %s", achievement.name, user_id)
        return GrantedAchievement(
            user_id=user_id,
            achievement_id=achievement.id,
            name=achievement.name,
            points_value=achievement.points_value,
            earned_at=earned_at,
        )

    async def _insert_grant(self, user_id: int, achievement_id: int) -> datetime:
        """
        Optimistic insert against the unique (user_id, achievement_id) index.

        Raises:
            ConflictError: the pair is already granted
        """
        earned_at = datetime.now(timezone.utc)
        dialect = self.db.get_bind().dialect.name

        if dialect in ("postgresql", "sqlite"):
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            stmt = (
                insert(UserAchievement)
                .values(user_id=user_id, achievement_id=achievement_id, earned_at=earned_at)
                .on_conflict_do_nothing(index_elements=["user_id", "achievement_id"])
                .returning(UserAchievement.id)
            )
            result = await self.db.execute(stmt)
            if result.scalar_one_or_none() is None:
                raise ConflictError(
                    "Achievement already granted",
                    user_id=user_id,
                    achievement_id=achievement_id,
                )
            return earned_at

        try:
            async with self.db.begin_nested():
                self.db.add(UserAchievement(
                    user_id=user_id,
                    achievement_id=achievement_id,
                    earned_at=earned_at,
                ))
        except IntegrityError:
            raise ConflictError(
                "Achievement already granted",
                user_id=user_id,
                achievement_id=achievement_id,
            )
        return earned_at

    async def award(self, achievement_id: int, user_id: int) -> GrantedAchievement | None:
        """Manually grant an achievement. Returns None when the user already has it."""
        user = await self._get_user(user_id)
        achievement = await self.get_achievement(achievement_id)
        grant = await self._grant(user_id, achievement)
        await self.db.commit()
        await self._announce(user, [grant] if grant else [])
        return grant

    async def _announce(self, user: User, granted: list[GrantedAchievement]) -> None:
        for grant in granted:
            await notify(self.relay, achievement_granted_event(user.id, user.display_name, grant.name))

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    async def create_achievement(
        self,
        name: str,
        criteria: AchievementCriteria | dict | str | None = None,
        type: str = AchievementType.MILESTONE.value,
        points_value: int = 0,
        description: str | None = None,
        icon: str | None = None,
        is_active: bool = True,
    ) -> Achievement:
        """Create a catalog entry. Criteria are validated here, not at evaluation time."""
        if not name or not name.strip():
            raise ValidationError("name is required", field="name")
        try:
            AchievementType(type)
        except ValueError:
            raise ValidationError(
                f"Invalid type. Must be one of: {[t.value for t in AchievementType]}",
                field="type",
            )
        parsed = parse_criteria(criteria)

        result = await self.db.execute(select(Achievement.id).where(Achievement.name == name))
        if result.scalar_one_or_none() is not None:
            raise ValidationError(f"Achievement {name!r} already exists", field="name")

        achievement = Achievement(
            name=name,
            description=description,
            type=type,
            icon=icon,
            points_value=points_value,
            criteria=parsed.to_json(),
            is_active=is_active,
        )
        self.db.add(achievement)
        await self.db.commit()
        await self.db.refresh(achievement)

        logger.info("Achievement created: %s (%s)", name, parsed.to_json())
        return achievement

    async def set_active(self, achievement_id: int, is_active: bool) -> Achievement:
        achievement = await self.get_achievement(achievement_id)
        achievement.is_active = is_active
        await self.db.commit()
        return achievement

    async def get_achievement(self, achievement_id: int) -> Achievement:
        result = await self.db.execute(select(Achievement).where(Achievement.id == achievement_id))
        achievement = result.scalar_one_or_none()
        if achievement is None:
            raise NotFoundError(f"Achievement {achievement_id} not found", achievement_id=achievement_id)
        return achievement

    async def list_achievements(self, active_only: bool = False) -> list[Achievement]:
        query = select(Achievement).order_by(Achievement.id)
        if active_only:
            query = query.where(Achievement.is_active == True)  # noqa: E712
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_user_achievements(self, user_id: int) -> list[dict[str, Any]]:
        """Granted achievements for a user, newest first."""
        await self._get_user(user_id)
        result = await self.db.execute(
            select(UserAchievement, Achievement)
            .join(Achievement, Achievement.id == UserAchievement.achievement_id)
            .where(UserAchievement.user_id == user_id)
            .order_by(UserAchievement.earned_at.desc(), UserAchievement.id.desc())
        )
        return [
            {
                "achievement_id": achievement.id,
                "name": achievement.name,
                "description": achievement.description,
                "type": achievement.type,
                "icon": achievement.icon,
                "points_value": achievement.points_value,
                "earned_at": grant.earned_at.isoformat() if grant.earned_at else None,
            }
            for grant, achievement in result.all()
        ]

    async def _get_user(self, user_id: int) -> User:
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError(f"User {user_id} not found", user_id=user_id)
        return user
