"""Optimization engine, activity log and AI analysis endpoints."""
from dataclasses import asdict
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Optional
import redis

from app.schemas.optimization import EvaluationResponse, ActivityLogResponse, AnalysisResponse
from app.services.analysis import AnalysisService, AnalysisError
from app.services.evaluation_lock import EvaluationLock, EvaluationInProgress
from app.services.optimizer import OptimizationEngine
from app.services.storage import ABTestStorage
from app.api.deps import get_storage, get_engine, get_evaluation_lock, get_analysis_service
from app.api.tests import get_test_or_404
from app.middleware.logging import get_logger

router = APIRouter(prefix="/api/tests")
logger = get_logger()


@router.post("/{test_id}/evaluate", response_model=EvaluationResponse)
async def evaluate_test(
    test_id: int,
    storage: ABTestStorage = Depends(get_storage),
    engine: OptimizationEngine = Depends(get_engine),
    evaluation_lock: EvaluationLock = Depends(get_evaluation_lock)
):
    """
    Run the optimization engine for a test now.

    - Disables variants below the kill-switch threshold
    - Promotes a significant winner above the auto-win threshold
    - Records an "evaluation" entry in the activity log
    """
    get_test_or_404(storage, test_id)

    try:
        with evaluation_lock.hold(test_id):
            result = engine.evaluate(test_id, record_evaluation=True)
    except EvaluationInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))
    except redis.RedisError as e:
        logger.error("evaluation_lock_unavailable", test_id=test_id, error=str(e))
        raise HTTPException(status_code=503, detail="Evaluation lock unavailable")

    return EvaluationResponse(**asdict(result))


@router.get("/{test_id}/activity", response_model=List[ActivityLogResponse])
async def get_activity_log(
    test_id: int,
    limit: int = Query(100, ge=1, le=1000),
    storage: ABTestStorage = Depends(get_storage)
):
    """Audit trail of autonomous and manual actions, newest first."""
    get_test_or_404(storage, test_id)
    return storage.get_activity_log(test_id, limit=limit)


@router.post("/{test_id}/analyze", response_model=AnalysisResponse)
async def analyze_test(
    test_id: int,
    storage: ABTestStorage = Depends(get_storage),
    analysis_service: Optional[AnalysisService] = Depends(get_analysis_service)
):
    """Ask the LLM for a short summary and recommendation based on last week's numbers."""
    if analysis_service is None:
        raise HTTPException(status_code=503, detail="AI analysis is not configured")

    test = get_test_or_404(storage, test_id)
    stats = analysis_service.collect_stats(storage, test)

    try:
        analysis = await analysis_service.analyze(test, stats)
    except AnalysisError as e:
        raise HTTPException(status_code=502, detail=f"Failed to generate analysis: {str(e)}")

    return AnalysisResponse(**analysis)
