"""Leaderboard definition, ranking read and recompute endpoints."""

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.api.deps import get_performance_service
from scoreboard.api.schemas import (
    LeaderboardCreate,
    LeaderboardResponse,
    RankingEntryResponse,
    RankingsResponse,
    RecalculationResponse,
)
from scoreboard.core.database import get_db
from scoreboard.models.leaderboard import Leaderboard
from scoreboard.services.leaderboards import LeaderboardService
from scoreboard.services.performance import PerformanceService

router = APIRouter()


@router.post("", response_model=LeaderboardResponse, status_code=status.HTTP_201_CREATED)
async def create_leaderboard(
    request: LeaderboardCreate,
    db: AsyncSession = Depends(get_db),
) -> Leaderboard:
    service = LeaderboardService(db)
    return await service.create_leaderboard(
        name=request.name,
        type=request.type,
        settings=request.settings,
        description=request.description,
        start_date=request.start_date,
        end_date=request.end_date,
    )


@router.get("", response_model=list[LeaderboardResponse])
async def list_leaderboards(
    type: str | None = Query(default=None, description="Filter by leaderboard type"),
    is_active: bool | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> list[Leaderboard]:
    service = LeaderboardService(db)
    return await service.list_leaderboards(type=type, is_active=is_active)


@router.get("/{leaderboard_id}", response_model=LeaderboardResponse)
async def get_leaderboard(
    leaderboard_id: int,
    db: AsyncSession = Depends(get_db),
) -> Leaderboard:
    service = LeaderboardService(db)
    return await service.get_leaderboard(leaderboard_id)


@router.get("/{leaderboard_id}/rankings", response_model=RankingsResponse)
async def get_rankings(
    leaderboard_id: int,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Cached rankings as of the last recompute."""
    service = LeaderboardService(db)
    rankings = await service.get_rankings(leaderboard_id, limit=limit, offset=offset)
    return {
        "leaderboard_id": leaderboard_id,
        "rankings": rankings,
        "limit": limit,
        "offset": offset,
    }


@router.get("/{leaderboard_id}/rankings/{user_id}", response_model=RankingEntryResponse)
async def get_user_ranking(
    leaderboard_id: int,
    user_id: int,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    service = LeaderboardService(db)
    return await service.get_user_ranking(leaderboard_id, user_id)


@router.post("/{leaderboard_id}/recalculate", response_model=RecalculationResponse)
async def recalculate_leaderboard(
    leaderboard_id: int,
    service: PerformanceService = Depends(get_performance_service),
) -> dict[str, Any]:
    """Recompute rankings from the metric ledger."""
    result = await service.recalculate_leaderboard(leaderboard_id)
    return asdict(result)
