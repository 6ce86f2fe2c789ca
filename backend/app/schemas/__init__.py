"""Pydantic schemas for request/response validation."""
from app.schemas.tests import (
    TestCreate,
    TestUpdate,
    TestResponse,
    TestDetailResponse,
    VariantResponse,
    ApplyWinnerRequest,
    VariantStatusUpdate,
)
from app.schemas.analytics import (
    AnalyticsPointCreate,
    AnalyticsBatchRequest,
    AnalyticsBatchResponse,
    AnalyticsPointResponse,
)
from app.schemas.optimization import EvaluationResponse, ActivityLogResponse, AnalysisResponse
from app.schemas.metrics import AggregateMetricsResponse

__all__ = [
    "TestCreate",
    "TestUpdate",
    "TestResponse",
    "TestDetailResponse",
    "VariantResponse",
    "ApplyWinnerRequest",
    "VariantStatusUpdate",
    "AnalyticsPointCreate",
    "AnalyticsBatchRequest",
    "AnalyticsBatchResponse",
    "AnalyticsPointResponse",
    "EvaluationResponse",
    "ActivityLogResponse",
    "AnalysisResponse",
    "AggregateMetricsResponse",
]
