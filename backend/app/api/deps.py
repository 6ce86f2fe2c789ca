"""Shared FastAPI dependencies."""
from fastapi import Depends
from sqlalchemy.orm import Session
from typing import Optional
import redis

from app.config import get_settings
from app.database import get_db
from app.services.analysis import AnalysisService
from app.services.evaluation_lock import EvaluationLock
from app.services.metrics import MetricsService
from app.services.optimizer import OptimizationEngine
from app.services.storage import ABTestStorage

settings = get_settings()

# Connection is lazy; nothing is opened until the first command
redis_client = redis.from_url(settings.redis_url)


def get_redis() -> redis.Redis:
    """Shared Redis client."""
    return redis_client


def get_storage(db: Session = Depends(get_db)) -> ABTestStorage:
    """Storage bound to the request's session."""
    return ABTestStorage(db)


def get_engine(storage: ABTestStorage = Depends(get_storage)) -> OptimizationEngine:
    """Optimization engine reading the configured analytics window."""
    return OptimizationEngine(storage, time_range=settings.evaluation_window)


def get_metrics(storage: ABTestStorage = Depends(get_storage)) -> MetricsService:
    """Dashboard metrics over the same window the engine reads."""
    return MetricsService(storage, time_range=settings.evaluation_window)


def get_evaluation_lock(client: redis.Redis = Depends(get_redis)) -> EvaluationLock:
    """Per-test evaluation lock."""
    return EvaluationLock(client, ttl_seconds=settings.evaluation_lock_ttl_seconds)


def get_analysis_service() -> Optional[AnalysisService]:
    """AI analysis, or None when no OpenAI key is configured."""
    if not settings.openai_api_key:
        return None
    return AnalysisService(api_key=settings.openai_api_key, model=settings.analysis_model)
