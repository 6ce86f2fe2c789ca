"""Analytics query and ingestion endpoints."""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List
import redis

from app.config import get_settings
from app.schemas.analytics import (
    AnalyticsBatchRequest,
    AnalyticsBatchResponse,
    AnalyticsPointResponse,
    TimeRange,
)
from app.services.evaluation_lock import EvaluationLock, EvaluationInProgress
from app.services.optimizer import OptimizationEngine
from app.services.storage import ABTestStorage, CounterRegression
from app.api.deps import get_storage, get_engine, get_evaluation_lock
from app.api.tests import get_test_or_404
from app.middleware.logging import get_logger

router = APIRouter(prefix="/api/tests")
settings = get_settings()
logger = get_logger()


@router.get("/{test_id}/analytics", response_model=List[AnalyticsPointResponse])
async def get_analytics(
    test_id: int,
    time_range: TimeRange = Query("1m", description="Window: 1h, 1d, 1w or 1m"),
    storage: ABTestStorage = Depends(get_storage)
):
    """
    Get cumulative analytics for charting.

    Points are bucketed per variant (15 min for 1h, 2 h for 1d, 1 day for 1w,
    1 week for 1m), keeping the latest snapshot in each bucket.
    """
    get_test_or_404(storage, test_id)
    return storage.get_analytics(test_id, time_range)


@router.post("/{test_id}/analytics", response_model=AnalyticsBatchResponse, status_code=201)
async def ingest_analytics(
    test_id: int,
    request: AnalyticsBatchRequest,
    storage: ABTestStorage = Depends(get_storage),
    engine: OptimizationEngine = Depends(get_engine),
    evaluation_lock: EvaluationLock = Depends(get_evaluation_lock)
):
    """
    Ingest a batch of cumulative snapshots, then evaluate the test.

    The whole batch is rejected with 400 if any variant's counters would
    go backwards relative to earlier snapshots.

    If another evaluation of the same test is already running the batch is
    still stored; the next ingestion or a manual trigger picks it up.
    """
    test = get_test_or_404(storage, test_id)
    variant_ids = {v.id for v in test.variants}
    unknown = sorted({p.variant_id for p in request.points} - variant_ids)
    if unknown:
        raise HTTPException(
            status_code=400,
            detail=f"Variants {unknown} do not belong to this test"
        )

    try:
        storage.validate_cumulative(request.points)
    except CounterRegression as e:
        raise HTTPException(status_code=400, detail=str(e))

    ingested = storage.create_analytics_batch(test_id, request.points)
    logger.info("analytics_ingested", test_id=test_id, points=ingested)

    if not settings.evaluate_after_ingestion:
        return AnalyticsBatchResponse(ingested=ingested)

    try:
        with evaluation_lock.hold(test_id):
            result = engine.evaluate(test_id)
    except EvaluationInProgress:
        logger.info("post_ingestion_evaluation_skipped", test_id=test_id, reason="evaluation_in_progress")
        return AnalyticsBatchResponse(ingested=ingested)
    except redis.RedisError as e:
        # Data is stored; evaluation can be re-triggered once Redis is back
        logger.warning("evaluation_lock_unavailable", test_id=test_id, error=str(e))
        return AnalyticsBatchResponse(ingested=ingested)

    if result.acted:
        logger.info(
            "post_ingestion_evaluation_acted",
            test_id=test_id,
            disabled_variant_ids=result.disabled_variant_ids,
            winner_variant_id=result.winner_variant_id
        )
    return AnalyticsBatchResponse(ingested=ingested, evaluated=True)
