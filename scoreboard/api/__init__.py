from fastapi import APIRouter

from scoreboard.api import achievements, activity, leaderboards, metrics, sales

api_router = APIRouter()
api_router.include_router(metrics.router, prefix="/metrics", tags=["metrics"])
api_router.include_router(leaderboards.router, prefix="/leaderboards", tags=["leaderboards"])
api_router.include_router(achievements.router, prefix="/achievements", tags=["achievements"])
api_router.include_router(sales.router, prefix="/sales", tags=["sales"])
api_router.include_router(activity.router, prefix="/activity", tags=["activity"])
