"""Sales performance and sales goal endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.core.database import get_db
from scoreboard.services.sales import SalesService

router = APIRouter()


class SalesGoalCreate(BaseModel):
    user_id: int
    metric_type: str
    target_value: int | float | str
    period: str
    start_date: datetime
    end_date: datetime
    leaderboard_id: int | None = None


class SalesGoalProgressResponse(BaseModel):
    goal_id: int
    user_id: int
    metric_type: str
    period: str
    target_value: Decimal
    current_value: Decimal
    percentage: Decimal
    attained: bool
    is_active: bool
    start_date: str
    end_date: str


@router.get("/performance")
async def get_sales_performance(
    leaderboard_id: int | None = Query(default=None),
    territory: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    service = SalesService(db)
    return {"performance": await service.get_sales_performance(leaderboard_id, territory)}


@router.get("/users/{user_id}")
async def get_user_sales_performance(
    user_id: int,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    service = SalesService(db)
    return await service.get_user_sales_performance(user_id)


@router.get("/analytics")
async def get_sales_analytics(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    service = SalesService(db)
    return await service.get_sales_analytics()


@router.get("/analytics/territories/{territory}")
async def get_territory_analytics(
    territory: str,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    service = SalesService(db)
    return await service.get_territory_analytics(territory)


@router.post("/goals", response_model=SalesGoalProgressResponse, status_code=status.HTTP_201_CREATED)
async def create_sales_goal(
    request: SalesGoalCreate,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    service = SalesService(db)
    goal = await service.create_goal(
        user_id=request.user_id,
        metric_type=request.metric_type,
        target_value=request.target_value,
        period=request.period,
        start_date=request.start_date,
        end_date=request.end_date,
        leaderboard_id=request.leaderboard_id,
    )
    return await service.get_goal_progress(goal.id)


@router.get("/goals/{goal_id}", response_model=SalesGoalProgressResponse)
async def get_sales_goal(
    goal_id: int,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    service = SalesService(db)
    return await service.get_goal_progress(goal_id)


@router.get("/users/{user_id}/goals", response_model=list[SalesGoalProgressResponse])
async def get_user_sales_goals(
    user_id: int,
    active_only: bool = Query(default=True),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    service = SalesService(db)
    return await service.get_user_goals_progress(user_id, active_only=active_only)


@router.delete("/goals/{goal_id}")
async def deactivate_sales_goal(
    goal_id: int,
    db: AsyncSession = Depends(get_db),
) -> dict[str, str]:
    service = SalesService(db)
    await service.deactivate_goal(goal_id)
    return {"status": "ok"}
