from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from scoreboard.models.base import Base

if TYPE_CHECKING:
    from scoreboard.models.achievement import UserAchievement
    from scoreboard.models.leaderboard import LeaderboardRanking
    from scoreboard.models.metric import Metric


class UserRole(str, Enum):
    """Organizational roles. Employees and sales reps share one user table."""

    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"
    SALES_REP = "sales_rep"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class User(Base):
    """A ranked person. Registration and authentication live outside this service."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    first_name: Mapped[str] = mapped_column(String(100))
    last_name: Mapped[str] = mapped_column(String(100))

    # Use String to avoid PostgreSQL enum mapping issues - values validated at app layer
    role: Mapped[str] = mapped_column(String(50), default=UserRole.EMPLOYEE.value)
    status: Mapped[str] = mapped_column(String(50), default=UserStatus.ACTIVE.value)

    # Organizational attributes
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    territory: Mapped[str | None] = mapped_column(String(100), nullable=True)  # sales reps
    manager: Mapped[str | None] = mapped_column(String(100), nullable=True)

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
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    achievements: Mapped[list["UserAchievement"]] = relationship(
        "UserAchievement",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    rankings: Mapped[list["LeaderboardRanking"]] = relationship(
        "LeaderboardRanking",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def display_name(self) -> str:
        full_name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full_name or self.email
