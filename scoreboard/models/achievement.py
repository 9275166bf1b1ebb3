"""Achievement catalog and per-user grants."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from scoreboard.models.base import Base

if TYPE_CHECKING:
    from scoreboard.models.user import User


class AchievementType(str, Enum):
    MILESTONE = "milestone"
    STREAK = "streak"
    GOAL = "goal"
    RECOGNITION = "recognition"


class Achievement(Base):
    """Catalog entry. Criteria are validated before they are stored."""

    __tablename__ = "achievements"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Use String to avoid PostgreSQL enum mapping issues - values validated at app layer
    type: Mapped[str] = mapped_column(String(50), default=AchievementType.MILESTONE.value)
    icon: Mapped[str | None] = mapped_column(String(100), nullable=True)
    points_value: Mapped[int] = mapped_column(Integer, default=0)
    # Canonical JSON of AchievementCriteria, e.g. {"metric_type": "points", "total_required": "1000"}
    criteria: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    # Relationships
    grants: Mapped[list["UserAchievement"]] = relationship(
        "UserAchievement",
        back_populates="achievement",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_achievement_active", "is_active"),
    )


class UserAchievement(Base):
    """Grant record. At most one per (user, achievement)."""

    __tablename__ = "user_achievements"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    achievement_id: Mapped[int] = mapped_column(
        ForeignKey("achievements.id", ondelete="CASCADE"),
        index=True,
    )
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="achievements")
    achievement: Mapped["Achievement"] = relationship("Achievement", back_populates="grants")

    __table_args__ = (
        Index("ix_user_achievement_unique", "user_id", "achievement_id", unique=True),
    )
