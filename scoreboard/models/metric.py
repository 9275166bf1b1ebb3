from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from scoreboard.models.base import Base

if TYPE_CHECKING:
    from scoreboard.models.leaderboard import Leaderboard
    from scoreboard.models.user import User


class MetricType(str, Enum):
    """Kinds of recorded performance events."""

    POINTS = "points"
    REVENUE = "revenue"
    DEALS = "deals"
    VOICE_SEATS = "voice_seats"
    CUSTOM = "custom"


class Metric(Base):
    """A single recorded performance event. Append-mostly."""

    __tablename__ = "metrics"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    leaderboard_id: Mapped[int | None] = mapped_column(
        ForeignKey("leaderboards.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Use String to avoid PostgreSQL enum mapping issues - values validated at app layer
    metric_type: Mapped[str] = mapped_column(String(50))
    value: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    weight: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("1.00"))

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str | None] = mapped_column(String(100), nullable=True)  # e.g. "crm_sync", "manual"

    # Timestamps
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
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
    user: Mapped["User"] = relationship("User", back_populates="metrics")
    leaderboard: Mapped["Leaderboard | None"] = relationship("Leaderboard", back_populates="metrics")

    __table_args__ = (
        Index("ix_metric_leaderboard_user", "leaderboard_id", "user_id"),
        Index("ix_metric_user_type", "user_id", "metric_type"),
        Index("ix_metric_recorded_at", "recorded_at"),
    )
