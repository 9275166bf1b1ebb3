from scoreboard.models.base import Base
from scoreboard.models.user import User, UserRole, UserStatus
from scoreboard.models.leaderboard import Leaderboard, LeaderboardRanking, LeaderboardType
from scoreboard.models.metric import Metric, MetricType
from scoreboard.models.achievement import Achievement, AchievementType, UserAchievement
from scoreboard.models.sales_goal import GoalPeriod, SalesGoal

__all__ = [
    "Base",
    "User",
    "UserRole",
    "UserStatus",
    "Leaderboard",
    "LeaderboardRanking",
    "LeaderboardType",
    "Metric",
    "MetricType",
    "Achievement",
    "AchievementType",
    "UserAchievement",
    "GoalPeriod",
    "SalesGoal",
]
