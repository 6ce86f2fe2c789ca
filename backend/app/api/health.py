"""Health check endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text
import redis

from app.config import get_settings
from app.database import get_db
from app.api.deps import get_redis, get_evaluation_lock
from app.services.evaluation_lock import EvaluationLock

router = APIRouter()
settings = get_settings()


@router.get("/health")
@router.head("/health")
async def health_check():
    """Basic health check."""
    return {"status": "healthy", "service": "variantlab-backend"}


@router.get("/health/detailed")
async def detailed_health_check(
    db: Session = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
    evaluation_lock: EvaluationLock = Depends(get_evaluation_lock)
):
    """
    Detailed health check for the optimization pipeline.

    Reports database and Redis connectivity, the tests currently being
    evaluated (held evaluation locks) and whether AI analysis is configured.
    Redis only backs the evaluation lock, so an outage there degrades
    evaluations but not reads or ingestion.
    """
    checks = {
        "api": "healthy",
        "database": "unknown",
        "evaluation_lock": "unknown"
    }
    evaluations_in_progress = []

    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as e:
        checks["database"] = f"unhealthy: {str(e)}"

    try:
        redis_client.ping()
        evaluations_in_progress = evaluation_lock.active_evaluations()
        checks["evaluation_lock"] = "healthy"
    except redis.RedisError as e:
        checks["evaluation_lock"] = f"unhealthy: {str(e)}"

    overall_status = "healthy" if all(
        v == "healthy" for v in checks.values()
    ) else "degraded"

    return {
        "status": overall_status,
        "checks": checks,
        "evaluations_in_progress": evaluations_in_progress,
        "ai_analysis": "configured" if settings.openai_api_key else "disabled"
    }
