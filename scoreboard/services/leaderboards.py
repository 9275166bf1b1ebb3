"""Leaderboard catalog and cached ranking reads."""

import json
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.core.errors import ComputeError, NotFoundError, ValidationError
from scoreboard.models.leaderboard import Leaderboard, LeaderboardRanking, LeaderboardType
from scoreboard.models.user import User
from scoreboard.services.scoring import parse_leaderboard_settings

_UNSET: Any = object()


def _validate_settings(board_settings: dict | str | None) -> str | None:
    """Serialize settings, rejecting anything the scoring engine could not read."""
    if board_settings is None:
        return None
    try:
        parse_leaderboard_settings(board_settings)
    except ComputeError as e:
        raise ValidationError(e.message, field="settings")
    if isinstance(board_settings, str):
        return board_settings
    return json.dumps(board_settings)


def _validate_type(board_type: str) -> str:
    try:
        return LeaderboardType(board_type).value
    except ValueError:
        raise ValidationError(
            f"Invalid type. Must be one of: {[t.value for t in LeaderboardType]}",
            field="type",
        )


def _validate_window(start_date: datetime | None, end_date: datetime | None) -> None:
    if start_date is not None and end_date is not None and end_date < start_date:
        raise ValidationError("end_date must not precede start_date", field="end_date")


class LeaderboardService:
    """Service for leaderboard definitions and ranking lookups."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_leaderboard(
        self,
        name: str,
        type: str = LeaderboardType.EMPLOYEE.value,
        settings: dict | str | None = None,
        description: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> Leaderboard:
        if not name or not name.strip():
            raise ValidationError("name is required", field="name")
        _validate_window(start_date, end_date)

        leaderboard = Leaderboard(
            name=name,
            description=description,
            type=_validate_type(type),
            settings=_validate_settings(settings),
            start_date=start_date,
            end_date=end_date,
            is_active=True,
        )
        self.db.add(leaderboard)
        await self.db.commit()
        await self.db.refresh(leaderboard)
        return leaderboard

    async def get_leaderboard(self, leaderboard_id: int) -> Leaderboard:
        result = await self.db.execute(select(Leaderboard).where(Leaderboard.id == leaderboard_id))
        leaderboard = result.scalar_one_or_none()
        if leaderboard is None:
            raise NotFoundError(f"Leaderboard {leaderboard_id} not found", leaderboard_id=leaderboard_id)
        return leaderboard

    async def list_leaderboards(
        self,
        type: str | None = None,
        is_active: bool | None = None,
    ) -> list[Leaderboard]:
        query = select(Leaderboard)
        if type is not None:
            query = query.where(Leaderboard.type == _validate_type(type))
        if is_active is not None:
            query = query.where(Leaderboard.is_active == is_active)
        result = await self.db.execute(query.order_by(Leaderboard.created_at.desc(), Leaderboard.id.desc()))
        return list(result.scalars().all())

    async def update_leaderboard(
        self,
        leaderboard_id: int,
        name: str | None = None,
        description: str | None = None,
        settings: dict | str | None = _UNSET,
        is_active: bool | None = None,
        start_date: datetime | None = _UNSET,
        end_date: datetime | None = _UNSET,
    ) -> Leaderboard:
        """Update a leaderboard. Cached rankings stay until the next recalculate."""
        leaderboard = await self.get_leaderboard(leaderboard_id)

        if name is not None:
            leaderboard.name = name
        if description is not None:
            leaderboard.description = description
        if settings is not _UNSET:
            leaderboard.settings = _validate_settings(settings)
        if is_active is not None:
            leaderboard.is_active = is_active
        if start_date is not _UNSET:
            leaderboard.start_date = start_date
        if end_date is not _UNSET:
            leaderboard.end_date = end_date
        _validate_window(leaderboard.start_date, leaderboard.end_date)

        await self.db.commit()
        await self.db.refresh(leaderboard)
        return leaderboard

    async def get_rankings(
        self,
        leaderboard_id: int,
        limit: int = 20,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Cached rankings joined with user display data, best rank first."""
        await self.get_leaderboard(leaderboard_id)
        result = await self.db.execute(
            select(LeaderboardRanking, User)
            .join(User, User.id == LeaderboardRanking.user_id)
            .where(LeaderboardRanking.leaderboard_id == leaderboard_id)
            .order_by(LeaderboardRanking.rank)
            .limit(limit)
            .offset(offset)
        )
        return [self._ranking_entry(ranking, user) for ranking, user in result.all()]

    async def get_user_ranking(self, leaderboard_id: int, user_id: int) -> dict[str, Any]:
        result = await self.db.execute(
            select(LeaderboardRanking, User)
            .join(User, User.id == LeaderboardRanking.user_id)
            .where(
                LeaderboardRanking.leaderboard_id == leaderboard_id,
                LeaderboardRanking.user_id == user_id,
            )
        )
        row = result.one_or_none()
        if row is None:
            raise NotFoundError(
                f"User {user_id} is not ranked on leaderboard {leaderboard_id}",
                leaderboard_id=leaderboard_id,
                user_id=user_id,
            )
        ranking, user = row
        return self._ranking_entry(ranking, user)

    @staticmethod
    def _ranking_entry(ranking: LeaderboardRanking, user: User) -> dict[str, Any]:
        return {
            "rank": ranking.rank,
            "user_id": user.id,
            "display_name": user.display_name,
            "department": user.department,
            "territory": user.territory,
            "score": ranking.score,
            "previous_rank": ranking.previous_rank,
            "rank_change": ranking.rank_change,
            "version": ranking.version,
            "calculated_at": ranking.calculated_at.isoformat() if ranking.calculated_at else None,
        }
