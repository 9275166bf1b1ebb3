"""Tests for rank assignment and persisted recompute passes."""
import asyncio
import gc
from decimal import Decimal

import pytest
from sqlalchemy import select

from scoreboard.core.errors import ComputeError, NotFoundError
from scoreboard.models.leaderboard import LeaderboardRanking
from scoreboard.services.leaderboards import LeaderboardService
from scoreboard.services.performance import PerformanceService
from scoreboard.services.ranking import LeaderboardLocks, RankingEngine, build_rankings, order_scores
from tests.conftest import RecordingSink, make_leaderboard, make_user


# =============================================================================
# PURE RANK ASSIGNMENT
# =============================================================================

class TestBuildRankings:

    def test_ranks_are_dense_and_ordered_by_score(self):
        rows = build_rankings([(1, Decimal("10")), (2, Decimal("30")), (3, Decimal("20"))])
        assert [(r.user_id, r.rank) for r in rows] == [(2, 1), (3, 2), (1, 3)]

    def test_ties_break_by_ascending_user_id(self):
        rows = build_rankings([(9, Decimal("50")), (4, Decimal("50")), (7, Decimal("50"))])
        assert [(r.user_id, r.rank) for r in rows] == [(4, 1), (7, 2), (9, 3)]

    def test_rank_set_is_one_to_n(self):
        scores = [(uid, Decimal(uid % 4)) for uid in range(1, 26)]
        rows = build_rankings(scores)
        assert sorted(r.rank for r in rows) == list(range(1, 26))

    def test_empty(self):
        assert build_rankings([]) == []

    def test_rank_change_from_previous(self):
        rows = build_rankings(
            [(1, Decimal("10")), (2, Decimal("30"))],
            previous_ranks={1: 1, 2: 2},
        )
        by_user = {r.user_id: r for r in rows}
        assert by_user[2].previous_rank == 2
        assert by_user[2].rank_change == 1  # moved up
        assert by_user[1].rank_change == -1

    def test_new_entrant_has_no_previous_rank(self):
        rows = build_rankings([(5, Decimal("1"))], previous_ranks={})
        assert rows[0].previous_rank is None
        assert rows[0].rank_change is None

    def test_order_scores_is_input_order_independent(self):
        scores = [(3, Decimal("1")), (1, Decimal("1")), (2, Decimal("2"))]
        assert order_scores(scores) == order_scores(list(reversed(scores)))


class TestLeaderboardLocks:

    def test_one_lock_per_leaderboard(self):
        locks = LeaderboardLocks()
        first = locks.for_leaderboard(1)
        second = locks.for_leaderboard(2)
        assert locks.for_leaderboard(1) is first
        assert first is not second
        assert len(locks) == 2

    def test_unused_locks_are_released(self):
        locks = LeaderboardLocks()
        held = locks.for_leaderboard(1)
        locks.for_leaderboard(404)
        gc.collect()
        assert len(locks) == 1

        del held
        gc.collect()
        assert len(locks) == 0

    async def test_unknown_leaderboard_leaves_no_lock(self, db, locks):
        with pytest.raises(NotFoundError):
            await RankingEngine(db, locks=locks).rank(404)
        gc.collect()
        assert len(locks) == 0


# =============================================================================
# RECOMPUTE (database)
# =============================================================================

async def _stored(db, leaderboard_id: int) -> list[tuple[int, int, Decimal]]:
    result = await db.execute(
        select(LeaderboardRanking)
        .where(LeaderboardRanking.leaderboard_id == leaderboard_id)
        .order_by(LeaderboardRanking.rank)
    )
    return [(r.user_id, r.rank, r.score) for r in result.scalars().all()]


class TestRecalculateLeaderboard:

    async def test_points_scenario(self, db, service):
        """500 then 300 points for a lone user: score 500, then 800, rank stays 1."""
        user = await make_user(db)
        board = await make_leaderboard(db)

        await service.submit_metric(user.id, "points", 500, leaderboard_id=board.id)
        first = await service.recalculate_leaderboard(board.id)
        assert first.ranked_count == 1
        assert await _stored(db, board.id) == [(user.id, 1, Decimal("500.00"))]

        await service.submit_metric(user.id, "points", 300, leaderboard_id=board.id)
        await service.recalculate_leaderboard(board.id)
        assert await _stored(db, board.id) == [(user.id, 1, Decimal("800.00"))]

        entry = await LeaderboardService(db).get_user_ranking(board.id, user.id)
        assert entry["previous_rank"] == 1
        assert entry["rank_change"] == 0

    async def test_sales_scenario(self, db, service):
        user = await make_user(db, role="sales_rep")
        board = await make_leaderboard(db, name="Sales", type="sales")

        await service.submit_metric(user.id, "revenue", 1000, leaderboard_id=board.id, weight="0.4")
        await service.submit_metric(user.id, "deals", 10, leaderboard_id=board.id, weight="0.1")
        await service.recalculate_leaderboard(board.id)

        assert await _stored(db, board.id) == [(user.id, 1, Decimal("401.00"))]

    async def test_recompute_is_idempotent(self, db, service):
        board = await make_leaderboard(db)
        for i, points in enumerate([300, 300, 120, 900]):
            user = await make_user(db, email=f"user{i}@example.com")
            await service.submit_metric(user.id, "points", points, leaderboard_id=board.id)

        await service.recalculate_leaderboard(board.id)
        first = await _stored(db, board.id)
        await service.recalculate_leaderboard(board.id)
        second = await _stored(db, board.id)

        assert first == second
        assert [rank for _, rank, _ in first] == [1, 2, 3, 4]

    async def test_version_increments_per_pass(self, db, service):
        user = await make_user(db)
        board = await make_leaderboard(db)
        await service.submit_metric(user.id, "points", 10, leaderboard_id=board.id)

        first = await service.recalculate_leaderboard(board.id)
        second = await service.recalculate_leaderboard(board.id)

        assert second.version == first.version + 1
        assert second.calculated_at is not None

    async def test_user_without_metrics_is_unranked(self, db, service):
        ranked = await make_user(db)
        idle = await make_user(db, email="idle@example.com")
        board = await make_leaderboard(db)
        await service.submit_metric(ranked.id, "points", 10, leaderboard_id=board.id)

        await service.recalculate_leaderboard(board.id)

        with pytest.raises(NotFoundError):
            await LeaderboardService(db).get_user_ranking(board.id, idle.id)

    async def test_stale_rows_removed_when_user_drops_out(self, db, service):
        keeper = await make_user(db)
        leaver = await make_user(db, email="leaver@example.com")
        board = await make_leaderboard(db)
        await service.submit_metric(keeper.id, "points", 10, leaderboard_id=board.id)
        metric = await service.submit_metric(leaver.id, "points", 50, leaderboard_id=board.id)
        await service.recalculate_leaderboard(board.id)
        assert len(await _stored(db, board.id)) == 2

        await service.metrics.delete(metric.id)
        result = await service.recalculate_leaderboard(board.id)

        assert result.ranked_count == 1
        assert await _stored(db, board.id) == [(keeper.id, 1, Decimal("10.00"))]

    async def test_empty_leaderboard(self, db, service):
        board = await make_leaderboard(db)
        result = await service.recalculate_leaderboard(board.id)
        assert result.ranked_count == 0
        assert await _stored(db, board.id) == []

    async def test_unknown_leaderboard(self, service):
        with pytest.raises(NotFoundError):
            await service.recalculate_leaderboard(12345)

    async def test_compute_error_keeps_previous_rankings(self, db, service):
        user = await make_user(db)
        board = await make_leaderboard(db, type="mixed")
        await service.submit_metric(user.id, "points", 40, leaderboard_id=board.id)
        before = await service.recalculate_leaderboard(board.id)

        board.settings = '{"employeeWeight": "lots"}'
        await db.commit()
        await service.submit_metric(user.id, "points", 60, leaderboard_id=board.id)

        with pytest.raises(ComputeError):
            await service.recalculate_leaderboard(board.id)

        assert await _stored(db, board.id) == [(user.id, 1, Decimal("40.00"))]
        refreshed = await LeaderboardService(db).get_leaderboard(board.id)
        assert refreshed.rankings_version == before.version

    async def test_leaderboards_are_independent(self, db, service):
        user = await make_user(db)
        first = await make_leaderboard(db, name="First")
        second = await make_leaderboard(db, name="Second")
        await service.submit_metric(user.id, "points", 5, leaderboard_id=first.id)
        await service.submit_metric(user.id, "points", 7, leaderboard_id=second.id)

        await service.recalculate_leaderboard(first.id)

        assert await _stored(db, first.id) == [(user.id, 1, Decimal("5.00"))]
        assert await _stored(db, second.id) == []

    async def test_concurrent_recomputes_are_serialized(self, file_sessions):
        """Two passes over one leaderboard never interleave their writes."""
        async with file_sessions() as setup:
            users = [await make_user(setup, email=f"user{i}@example.com") for i in range(4)]
            board = await make_leaderboard(setup)
            seeding = PerformanceService(setup, relay=RecordingSink(), locks=LeaderboardLocks())
            for i, user in enumerate(users):
                await seeding.submit_metric(user.id, "points", 100 * (i + 1), leaderboard_id=board.id)
            board_id = board.id

        locks = LeaderboardLocks()

        async def recalculate():
            async with file_sessions() as session:
                service = PerformanceService(session, relay=RecordingSink(), locks=locks)
                return await service.recalculate_leaderboard(board_id)

        results = await asyncio.gather(recalculate(), recalculate())

        assert max(r.version for r in results) == 2
        async with file_sessions() as session:
            stored = await session.execute(
                select(LeaderboardRanking.version, LeaderboardRanking.rank)
                .where(LeaderboardRanking.leaderboard_id == board_id)
            )
            rows = stored.all()
            refreshed = await LeaderboardService(session).get_leaderboard(board_id)

        assert {row.version for row in rows} == {2}
        assert sorted(row.rank for row in rows) == [1, 2, 3, 4]
        assert refreshed.rankings_version == 2


class TestRankingReads:

    async def test_rankings_are_paged_in_rank_order(self, db, service):
        board = await make_leaderboard(db)
        for i in range(5):
            user = await make_user(db, email=f"p{i}@example.com", first_name=f"P{i}")
            await service.submit_metric(user.id, "points", (i + 1) * 10, leaderboard_id=board.id)
        await service.recalculate_leaderboard(board.id)

        leaderboards = LeaderboardService(db)
        page = await leaderboards.get_rankings(board.id, limit=2, offset=1)

        assert [entry["rank"] for entry in page] == [2, 3]
        assert page[0]["display_name"] == "P3 Rivera"
        assert page[0]["score"] == Decimal("40.00")

    async def test_rankings_of_unknown_leaderboard(self, db):
        with pytest.raises(NotFoundError):
            await LeaderboardService(db).get_rankings(404)
