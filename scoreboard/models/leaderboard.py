"""Leaderboards and their derived ranking rows."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from scoreboard.models.base import Base

if TYPE_CHECKING:
    from scoreboard.models.metric import Metric
    from scoreboard.models.user import User


class LeaderboardType(str, Enum):
    """Leaderboard type selects the aggregation rule used for scoring."""

    EMPLOYEE = "employee"  # sum of points
    SALES = "sales"  # sum of value * weight over every metric
    MIXED = "mixed"  # weighted blend of the two


class Leaderboard(Base):
    """Named ranking context."""

    __tablename__ = "leaderboards"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(50), default=LeaderboardType.EMPLOYEE.value)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Lifecycle window - open-ended when unset
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # JSON: {"employeeWeight": 0.5, "salesWeight": 0.5, "displayCount": 25, "updateFrequency": "hourly"}
    settings: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Bumped on every successful recompute
    rankings_version: Mapped[int] = mapped_column(Integer, default=0)
    rankings_calculated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

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
    metrics: Mapped[list["Metric"]] = relationship(
        "Metric",
        back_populates="leaderboard",
        passive_deletes=True,
    )
    rankings: Mapped[list["LeaderboardRanking"]] = relationship(
        "LeaderboardRanking",
        back_populates="leaderboard",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class LeaderboardRanking(Base):
    """Materialized rank of a user on a leaderboard.

    Fully derivable from metrics + leaderboard state; safe to discard and rebuild.
    """

    __tablename__ = "leaderboard_rankings"

    id: Mapped[int] = mapped_column(primary_key=True)
    leaderboard_id: Mapped[int] = mapped_column(
        ForeignKey("leaderboards.id", ondelete="CASCADE"),
        index=True,
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )

    rank: Mapped[int] = mapped_column(Integer)
    score: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    previous_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rank_change: Mapped[int | None] = mapped_column(Integer, nullable=True)  # positive = improved

    # Recompute pass that produced this row
    version: Mapped[int] = mapped_column(Integer, default=1)
    calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    # Relationships
    leaderboard: Mapped["Leaderboard"] = relationship("Leaderboard", back_populates="rankings")
    user: Mapped["User"] = relationship("User", back_populates="rankings")

    __table_args__ = (
        Index("ix_leaderboard_ranking_unique", "leaderboard_id", "user_id", unique=True),
        Index("ix_leaderboard_ranking_rank", "leaderboard_id", "rank"),
    )
