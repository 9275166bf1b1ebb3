"""Tests for sales performance reporting and sales goals."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from scoreboard.core.errors import NotFoundError, ValidationError
from scoreboard.services.sales import SalesService
from tests.conftest import make_leaderboard, make_user


async def _reps(db):
    west = await make_user(db, email="west@example.com", first_name="Wes", role="sales_rep", territory="West")
    east = await make_user(db, email="east@example.com", first_name="Eve", role="sales_rep", territory="East")
    return west, east


class TestSalesPerformance:

    async def test_per_rep_totals_ordered_by_weighted_score(self, db, service):
        west, east = await _reps(db)
        board = await make_leaderboard(db, name="Sales", type="sales")
        await service.submit_metric(west.id, "revenue", 1000, leaderboard_id=board.id, weight="0.4")
        await service.submit_metric(west.id, "deals", 10, leaderboard_id=board.id, weight="0.1")
        await service.submit_metric(east.id, "voice_seats", 50, leaderboard_id=board.id, weight="10")

        performance = await SalesService(db).get_sales_performance(leaderboard_id=board.id)

        assert [p["user_id"] for p in performance] == [east.id, west.id]
        assert performance[1]["revenue"] == Decimal("1000.00")
        assert performance[1]["deals"] == Decimal("10.00")
        assert performance[1]["weighted_score"] == Decimal("401.00")
        assert performance[0]["voice_seats"] == Decimal("50.00")

    async def test_excludes_non_sales_users_and_filters_territory(self, db, service):
        west, east = await _reps(db)
        employee = await make_user(db, email="emp@example.com")
        await service.submit_metric(west.id, "revenue", 10)
        await service.submit_metric(east.id, "revenue", 20)
        await service.submit_metric(employee.id, "revenue", 30)

        sales = SalesService(db)
        assert {p["user_id"] for p in await sales.get_sales_performance()} == {west.id, east.id}
        assert [p["user_id"] for p in await sales.get_sales_performance(territory="West")] == [west.id]

    async def test_user_breakdown(self, db, service):
        west, _ = await _reps(db)
        await service.submit_metric(west.id, "revenue", 100, weight=2)
        await service.submit_metric(west.id, "revenue", 50)
        await service.submit_metric(west.id, "deals", 1)

        breakdown = await SalesService(db).get_user_sales_performance(west.id)

        assert len(breakdown["metrics"]["revenue"]) == 2
        assert breakdown["totals"]["revenue"] == Decimal("150.00")
        assert breakdown["totals"]["weighted_score"] == Decimal("251.00")

    async def test_user_breakdown_unknown_user(self, db):
        with pytest.raises(NotFoundError):
            await SalesService(db).get_user_sales_performance(31337)

    async def test_analytics(self, db, service):
        west, east = await _reps(db)
        await service.submit_metric(west.id, "revenue", 100)
        await service.submit_metric(east.id, "revenue", 200)
        await service.submit_metric(east.id, "deals", 3)

        sales = SalesService(db)
        overall = await sales.get_sales_analytics()
        assert overall["revenue"] == Decimal("300.00")
        assert overall["deals"] == Decimal("3.00")
        assert overall["active_sales_reps"] == 2

        east_only = await sales.get_territory_analytics("East")
        assert east_only["territory"] == "East"
        assert east_only["revenue"] == Decimal("200.00")
        assert east_only["active_sales_reps"] == 1


class TestSalesGoals:

    async def test_progress_is_derived_from_metrics_in_window(self, db, service):
        west, _ = await _reps(db)
        now = datetime.now(timezone.utc)
        sales = SalesService(db)
        goal = await sales.create_goal(
            user_id=west.id,
            metric_type="revenue",
            target_value=1000,
            period="monthly",
            start_date=now - timedelta(days=1),
            end_date=now + timedelta(days=30),
        )

        await service.submit_metric(west.id, "revenue", 250)
        await service.submit_metric(west.id, "deals", 999)

        progress = await sales.get_goal_progress(goal.id)
        assert progress["current_value"] == Decimal("250.00")
        assert progress["percentage"] == Decimal("25.00")
        assert progress["attained"] is False

        await service.submit_metric(west.id, "revenue", 750)
        progress = await sales.get_goal_progress(goal.id)
        assert progress["attained"] is True

    async def test_user_goals_skip_inactive(self, db):
        west, _ = await _reps(db)
        now = datetime.now(timezone.utc)
        sales = SalesService(db)
        kept = await sales.create_goal(west.id, "deals", 5, "quarterly", now, now + timedelta(days=90))
        dropped = await sales.create_goal(west.id, "revenue", 5, "yearly", now, now + timedelta(days=365))
        await sales.deactivate_goal(dropped.id)

        goals = await sales.get_user_goals_progress(west.id)
        assert [g["goal_id"] for g in goals] == [kept.id]
        assert len(await sales.get_user_goals_progress(west.id, active_only=False)) == 2

    @pytest.mark.parametrize("overrides", [
        {"metric_type": "karma"},
        {"target_value": 0},
        {"target_value": "many"},
        {"period": "weekly"},
    ])
    async def test_invalid_goal(self, db, overrides):
        west, _ = await _reps(db)
        now = datetime.now(timezone.utc)
        fields = {
            "user_id": west.id,
            "metric_type": "revenue",
            "target_value": 100,
            "period": "monthly",
            "start_date": now,
            "end_date": now + timedelta(days=30),
        }
        fields.update(overrides)
        with pytest.raises(ValidationError):
            await SalesService(db).create_goal(**fields)

    async def test_end_before_start_rejected(self, db):
        west, _ = await _reps(db)
        now = datetime.now(timezone.utc)
        with pytest.raises(ValidationError):
            await SalesService(db).create_goal(west.id, "revenue", 10, "monthly", now, now - timedelta(days=1))

    async def test_unknown_goal(self, db):
        with pytest.raises(NotFoundError):
            await SalesService(db).get_goal_progress(5)
