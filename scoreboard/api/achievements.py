"""Achievement catalog and grant endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.api.deps import get_event_relay
from scoreboard.api.schemas import AchievementCreate, AchievementResponse, UserAchievementResponse
from scoreboard.core.database import get_db
from scoreboard.models.achievement import Achievement
from scoreboard.services.achievements import AchievementEngine
from scoreboard.services.events import EventRelay

router = APIRouter()


@router.post("", response_model=AchievementResponse, status_code=status.HTTP_201_CREATED)
async def create_achievement(
    request: AchievementCreate,
    db: AsyncSession = Depends(get_db),
    relay: EventRelay = Depends(get_event_relay),
) -> Achievement:
    """Create a catalog entry. Criteria are validated before the row is written."""
    engine = AchievementEngine(db, relay=relay)
    return await engine.create_achievement(
        name=request.name,
        criteria=request.criteria,
        type=request.type,
        points_value=request.points_value,
        description=request.description,
        icon=request.icon,
    )


@router.get("", response_model=list[AchievementResponse])
async def list_achievements(
    active_only: bool = Query(default=False),
    db: AsyncSession = Depends(get_db),
) -> list[Achievement]:
    engine = AchievementEngine(db)
    return await engine.list_achievements(active_only=active_only)


@router.get("/users/{user_id}", response_model=list[UserAchievementResponse])
async def get_user_achievements(
    user_id: int,
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    """Achievements a user has earned, newest first."""
    engine = AchievementEngine(db)
    return await engine.get_user_achievements(user_id)


@router.post("/users/{user_id}/sweep", response_model=list[UserAchievementResponse])
async def sweep_user_achievements(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    relay: EventRelay = Depends(get_event_relay),
) -> list[dict[str, Any]]:
    """Re-evaluate a user's whole metric history and return the newly granted achievements."""
    engine = AchievementEngine(db, relay=relay)
    granted = await engine.update_user_achievements(user_id)
    granted_ids = {g.achievement_id for g in granted}
    earned = await engine.get_user_achievements(user_id)
    return [a for a in earned if a["achievement_id"] in granted_ids]
