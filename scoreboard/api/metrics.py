"""Metric ingestion and administration endpoints."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, status

from scoreboard.api.deps import get_performance_service
from scoreboard.api.schemas import (
    MetricBulkCreate,
    MetricBulkResponse,
    MetricCreate,
    MetricResponse,
    MetricUpdate,
)
from scoreboard.models.metric import Metric
from scoreboard.services.metrics import MetricFilter
from scoreboard.services.performance import PerformanceService

router = APIRouter()


@router.post("", response_model=MetricResponse, status_code=status.HTTP_201_CREATED)
async def create_metric(
    request: MetricCreate,
    service: PerformanceService = Depends(get_performance_service),
) -> Metric:
    """Record a metric and evaluate achievements for its owner."""
    return await service.submit_metric(
        user_id=request.user_id,
        metric_type=request.metric_type,
        value=request.value,
        leaderboard_id=request.leaderboard_id,
        weight=request.weight,
        source=request.source,
        description=request.description,
    )


@router.post("/bulk", response_model=MetricBulkResponse)
async def create_metrics_bulk(
    request: MetricBulkCreate,
    service: PerformanceService = Depends(get_performance_service),
) -> dict[str, Any]:
    """Record many metrics. Valid items are kept even when others fail."""
    result = await service.submit_metrics(request.items)
    return {
        "recorded": result.successes,
        "errors": [
            {"index": e.index, "error": e.error, "message": e.message}
            for e in result.errors
        ],
        "skipped": result.skipped,
    }


@router.get("", response_model=list[MetricResponse])
async def list_metrics(
    user_id: int | None = Query(default=None),
    leaderboard_id: int | None = Query(default=None),
    metric_type: str | None = Query(default=None),
    recorded_after: datetime | None = Query(default=None),
    recorded_before: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    service: PerformanceService = Depends(get_performance_service),
) -> list[Metric]:
    """Query metrics, newest first."""
    return await service.metrics.query(MetricFilter(
        user_id=user_id,
        leaderboard_id=leaderboard_id,
        metric_type=metric_type,
        recorded_after=recorded_after,
        recorded_before=recorded_before,
        limit=limit,
        offset=offset,
    ))


@router.put("/{metric_id}", response_model=MetricResponse)
async def update_metric(
    metric_id: int,
    request: MetricUpdate,
    service: PerformanceService = Depends(get_performance_service),
) -> Metric:
    return await service.metrics.update(
        metric_id,
        value=request.value,
        weight=request.weight,
        description=request.description,
    )


@router.delete("/{metric_id}")
async def delete_metric(
    metric_id: int,
    service: PerformanceService = Depends(get_performance_service),
) -> dict[str, str]:
    await service.metrics.delete(metric_id)
    return {"status": "ok"}
