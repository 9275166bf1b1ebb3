"""FastAPI dependencies shared by the routers."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.core.database import get_db
from scoreboard.services.events import EventRelay, event_relay
from scoreboard.services.performance import PerformanceService
from scoreboard.services.ranking import LeaderboardLocks, leaderboard_locks


def get_event_relay() -> EventRelay:
    return event_relay


def get_leaderboard_locks() -> LeaderboardLocks:
    return leaderboard_locks


def get_performance_service(
    db: AsyncSession = Depends(get_db),
    relay: EventRelay = Depends(get_event_relay),
    locks: LeaderboardLocks = Depends(get_leaderboard_locks),
) -> PerformanceService:
    return PerformanceService(db, relay=relay, locks=locks)
