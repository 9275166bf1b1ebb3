"""Tests for achievement criteria, evaluation and exactly-once grants."""
import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from scoreboard.core.errors import ConflictError, NotFoundError, ValidationError
from scoreboard.models.achievement import UserAchievement
from scoreboard.services.achievement_seeder import (
    generate_default_achievements,
    roman_numeral,
    seed_achievements,
)
from scoreboard.services.achievements import (
    AchievementCriteria,
    AchievementEngine,
    CumulativeThreshold,
    MetricTypeFilter,
    MinValue,
    parse_criteria,
)
from scoreboard.services.events import ACHIEVEMENT_GRANTED
from scoreboard.services.performance import PerformanceService
from scoreboard.services.ranking import LeaderboardLocks
from tests.conftest import RecordingSink, make_achievement, make_user


async def _grant_count(db, user_id: int) -> int:
    result = await db.execute(
        select(func.count()).select_from(UserAchievement).where(UserAchievement.user_id == user_id)
    )
    return result.scalar_one()


# =============================================================================
# CRITERIA
# =============================================================================

class TestParseCriteria:

    def test_camel_case(self):
        criteria = parse_criteria({"metricType": "points", "totalRequired": 1000})
        assert criteria.type_filter == MetricTypeFilter("points")
        assert criteria.cumulative == CumulativeThreshold(Decimal("1000"))
        assert criteria.min_value is None

    def test_snake_case_json(self):
        criteria = parse_criteria('{"metric_type": "revenue", "min_value": "2500.50"}')
        assert criteria.min_value == MinValue(Decimal("2500.50"))

    def test_empty_criteria_match_everything(self):
        criteria = parse_criteria(None)
        assert criteria.predicates == []
        assert criteria.accepts_event("deals", Decimal("-3"))

    @pytest.mark.parametrize("raw", [
        {"metricType": "karma"},
        {"minValue": "lots"},
        {"totalRequired": None, "bonus": 1},
        {"metricType": "points", "metric_type": "points"},
        "[1]",
        "{oops",
    ])
    def test_invalid_criteria(self, raw):
        with pytest.raises(ValidationError):
            parse_criteria(raw)

    def test_canonical_json_round_trip(self):
        criteria = parse_criteria({"totalRequired": "1000", "metricType": "points"})
        assert criteria.to_json() == '{"metric_type": "points", "total_required": "1000"}'
        assert parse_criteria(criteria.to_json()) == criteria

    def test_accepts_event_checks_type_then_min_value(self):
        criteria = AchievementCriteria(
            type_filter=MetricTypeFilter("revenue"),
            min_value=MinValue(Decimal("100")),
        )
        assert criteria.accepts_event("revenue", Decimal("100"))
        assert not criteria.accepts_event("revenue", Decimal("99.99"))
        assert not criteria.accepts_event("deals", Decimal("500"))

    def test_total_metric_type_defaults_to_triggering_type(self):
        assert AchievementCriteria().total_metric_type("deals") == "deals"
        filtered = AchievementCriteria(type_filter=MetricTypeFilter("points"))
        assert filtered.total_metric_type("deals") == "points"


# =============================================================================
# EVALUATION
# =============================================================================

class TestAchievementEvaluation:

    async def test_cumulative_threshold_grants_once(self, db, service, sink):
        """950 points, then +100: granted exactly once; re-evaluating does not re-grant."""
        user = await make_user(db)
        achievement = await make_achievement(db)

        await service.submit_metric(user.id, "points", 950)
        assert await _grant_count(db, user.id) == 0

        await service.submit_metric(user.id, "points", 100)
        assert await _grant_count(db, user.id) == 1

        again = await AchievementEngine(db, relay=sink).evaluate(user.id, "points", 100)
        assert again == []
        assert await _grant_count(db, user.id) == 1

        granted_events = sink.of_type(ACHIEVEMENT_GRANTED)
        assert len(granted_events) == 1
        assert granted_events[0].achievement_name == achievement.name

    async def test_min_value_requires_single_event(self, db, service):
        user = await make_user(db, role="sales_rep")
        await make_achievement(db, name="Big Ticket", criteria={"metricType": "revenue", "minValue": 10000})

        await service.submit_metric(user.id, "revenue", 6000)
        await service.submit_metric(user.id, "revenue", 6000)
        assert await _grant_count(db, user.id) == 0

        await service.submit_metric(user.id, "revenue", 10000)
        assert await _grant_count(db, user.id) == 1

    async def test_type_filter_ignores_other_types(self, db, service):
        user = await make_user(db)
        await make_achievement(db, name="First Deal", criteria={"metricType": "deals"})

        await service.submit_metric(user.id, "points", 5000)
        assert await _grant_count(db, user.id) == 0

        await service.submit_metric(user.id, "deals", 1)
        assert await _grant_count(db, user.id) == 1

    async def test_cumulative_without_filter_sums_triggering_type(self, db, service):
        user = await make_user(db)
        await make_achievement(db, name="Hundred", criteria={"totalRequired": 100})

        await service.submit_metric(user.id, "points", 60)
        await service.submit_metric(user.id, "deals", 60)
        assert await _grant_count(db, user.id) == 0

        await service.submit_metric(user.id, "points", 40)
        assert await _grant_count(db, user.id) == 1

    async def test_inactive_achievements_are_skipped(self, db, service):
        user = await make_user(db)
        achievement = await make_achievement(db, criteria={"metricType": "points"})
        await AchievementEngine(db).set_active(achievement.id, False)

        await service.submit_metric(user.id, "points", 1)
        assert await _grant_count(db, user.id) == 0

    async def test_unknown_user(self, db):
        with pytest.raises(NotFoundError):
            await AchievementEngine(db).evaluate(999, "points", 1)

    async def test_unknown_metric_type(self, db):
        user = await make_user(db)
        with pytest.raises(ValidationError):
            await AchievementEngine(db).evaluate(user.id, "karma", 1)

    async def test_duplicate_insert_raises_conflict_internally(self, db):
        user = await make_user(db)
        achievement = await make_achievement(db)
        engine = AchievementEngine(db)

        await engine._insert_grant(user.id, achievement.id)
        with pytest.raises(ConflictError):
            await engine._insert_grant(user.id, achievement.id)

    async def test_manual_award_is_idempotent(self, db):
        user = await make_user(db)
        achievement = await make_achievement(db)
        engine = AchievementEngine(db)

        first = await engine.award(achievement.id, user.id)
        second = await engine.award(achievement.id, user.id)

        assert first is not None
        assert second is None
        assert await _grant_count(db, user.id) == 1

    async def test_concurrent_qualifying_metrics_grant_once(self, file_sessions):
        """Several writers crossing the threshold at once still produce one grant."""
        async with file_sessions() as setup:
            user = await make_user(setup)
            await make_achievement(setup, criteria={"metricType": "points", "totalRequired": 1000})
            user_id = user.id

        locks = LeaderboardLocks()
        sinks = [RecordingSink() for _ in range(5)]

        async def submit(sink):
            async with file_sessions() as session:
                service = PerformanceService(session, relay=sink, locks=locks)
                await service.submit_metric(user_id, "points", 1000)

        await asyncio.gather(*(submit(sink) for sink in sinks))

        async with file_sessions() as session:
            assert await _grant_count(session, user_id) == 1
        assert sum(len(s.of_type(ACHIEVEMENT_GRANTED)) for s in sinks) == 1


class TestSweep:

    async def test_sweep_grants_missed_achievements(self, db, service):
        user = await make_user(db)
        await service.submit_metric(user.id, "points", 700)
        await service.submit_metric(user.id, "points", 400)
        await make_achievement(db)

        granted = await AchievementEngine(db).update_user_achievements(user.id)

        assert [g.name for g in granted] == ["1000 Points Milestone"]
        assert await _grant_count(db, user.id) == 1

    async def test_metric_delete_never_revokes(self, db, service):
        user = await make_user(db)
        await make_achievement(db)
        metric = await service.submit_metric(user.id, "points", 1000)
        assert await _grant_count(db, user.id) == 1

        await service.metrics.delete(metric.id)

        assert await _grant_count(db, user.id) == 1


class TestCatalog:

    async def test_create_validates_criteria_before_writing(self, db):
        engine = AchievementEngine(db)
        with pytest.raises(ValidationError):
            await engine.create_achievement(name="Broken", criteria={"metricType": "karma"})
        assert await engine.list_achievements() == []

    async def test_duplicate_name_rejected(self, db):
        await make_achievement(db)
        with pytest.raises(ValidationError):
            await make_achievement(db)

    async def test_criteria_stored_canonically(self, db):
        achievement = await make_achievement(db, criteria={"totalRequired": 1000, "metricType": "points"})
        assert achievement.criteria == '{"metric_type": "points", "total_required": "1000"}'

    async def test_user_achievements_listing(self, db, service):
        user = await make_user(db)
        await make_achievement(db, name="Starter", criteria={"metricType": "points"}, points_value=5)
        await service.submit_metric(user.id, "points", 1)

        earned = await AchievementEngine(db).get_user_achievements(user.id)

        assert len(earned) == 1
        assert earned[0]["name"] == "Starter"
        assert earned[0]["points_value"] == 5


# =============================================================================
# SEEDER
# =============================================================================

class TestSeeder:

    def test_roman_numerals(self):
        assert roman_numeral(1) == "I"
        assert roman_numeral(4) == "IV"
        assert roman_numeral(9) == "IX"
        assert roman_numeral(14) == "XIV"

    def test_default_catalog_is_valid(self):
        achievements = generate_default_achievements()
        names = [a["name"] for a in achievements]
        assert len(names) == len(set(names))
        assert "1000 Points Milestone" in names
        for a in achievements:
            parse_criteria(a["criteria"])
            assert a["points_value"] >= 5

    async def test_seed_is_idempotent(self, db):
        created = await seed_achievements(db)
        assert created == len(generate_default_achievements())
        assert await seed_achievements(db) == 0
