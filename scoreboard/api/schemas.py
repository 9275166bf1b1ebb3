"""Request and response schemas for the HTTP adapter."""

import json
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _load_json_object(value: Any) -> Any:
    """Stored JSON text columns are exposed as objects."""
    if isinstance(value, str):
        return json.loads(value) if value else None
    return value


# =============================================================================
# METRICS
# =============================================================================

# Numeric fields accept numbers or numeric strings; the metric store validates them
NumericInput = int | float | str


class MetricCreate(BaseModel):
    """Single metric submission."""
    user_id: int
    metric_type: str
    value: NumericInput
    leaderboard_id: int | None = None
    weight: NumericInput | None = None
    source: str | None = Field(default=None, max_length=100)
    description: str | None = None


class MetricUpdate(BaseModel):
    """Administrative metric edit."""
    value: NumericInput | None = None
    weight: NumericInput | None = None
    description: str | None = None


class MetricBulkCreate(BaseModel):
    """Bulk submission. Items are validated one by one so bad items do not reject the batch."""
    items: list[dict[str, Any]]


class MetricResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    leaderboard_id: int | None
    metric_type: str
    value: Decimal
    weight: Decimal
    source: str | None
    description: str | None
    recorded_at: datetime | None


class BulkItemErrorResponse(BaseModel):
    index: int
    error: str
    message: str


class MetricBulkResponse(BaseModel):
    recorded: list[MetricResponse]
    errors: list[BulkItemErrorResponse]
    skipped: int


# =============================================================================
# LEADERBOARDS
# =============================================================================

class LeaderboardCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: str = "employee"
    description: str | None = None
    settings: dict[str, Any] | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


class LeaderboardResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None
    type: str
    is_active: bool
    settings: dict[str, Any] | None
    start_date: datetime | None
    end_date: datetime | None
    rankings_version: int
    rankings_calculated_at: datetime | None

    @field_validator("settings", mode="before")
    @classmethod
    def parse_settings(cls, value: Any) -> Any:
        return _load_json_object(value)


class RankingEntryResponse(BaseModel):
    """Single cached ranking row."""
    rank: int
    user_id: int
    display_name: str
    department: str | None = None
    territory: str | None = None
    score: Decimal
    previous_rank: int | None
    rank_change: int | None
    version: int
    calculated_at: str | None


class RankingsResponse(BaseModel):
    leaderboard_id: int
    rankings: list[RankingEntryResponse]
    limit: int
    offset: int


class RecalculationResponse(BaseModel):
    leaderboard_id: int
    ranked_count: int
    version: int | None
    calculated_at: datetime | None


# =============================================================================
# ACHIEVEMENTS
# =============================================================================

class AchievementCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    type: str = "milestone"
    icon: str | None = None
    points_value: int = Field(default=0, ge=0)
    criteria: dict[str, Any] | None = None


class AchievementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None
    type: str
    icon: str | None
    points_value: int
    criteria: dict[str, Any] | None
    is_active: bool

    @field_validator("criteria", mode="before")
    @classmethod
    def parse_criteria(cls, value: Any) -> Any:
        return _load_json_object(value)


class UserAchievementResponse(BaseModel):
    """Achievement earned by a user."""
    achievement_id: int
    name: str
    description: str | None
    type: str
    icon: str | None
    points_value: int
    earned_at: str | None
