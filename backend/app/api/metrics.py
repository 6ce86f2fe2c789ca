"""Dashboard metric endpoints."""
from fastapi import APIRouter, Depends

from app.schemas.metrics import AggregateMetricsResponse
from app.services.metrics import MetricsService
from app.api.deps import get_metrics

router = APIRouter(prefix="/api/metrics")


@router.get("/aggregate", response_model=AggregateMetricsResponse)
async def get_aggregate_metrics(metrics: MetricsService = Depends(get_metrics)):
    """
    Totals across all tests: counts by status, reach, latest views and
    conversions, and the summed conversion uplift over control.
    """
    return metrics.aggregate()
