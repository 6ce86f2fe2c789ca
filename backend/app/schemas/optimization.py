"""Optimization, activity log and analysis schemas."""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime

from app.models.activity_log import ActivityAction


class EvaluationResponse(BaseModel):
    """Outcome of one optimization engine pass."""

    test_id: int
    skipped_reason: Optional[str] = None
    disabled_variant_ids: List[int] = Field(default_factory=list)
    winner_variant_id: Optional[int] = None

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "test_id": 1,
                "skipped_reason": None,
                "disabled_variant_ids": [3],
                "winner_variant_id": 2
            }
        }


class ActivityLogResponse(BaseModel):
    """Audit entry as returned by the API."""

    id: int
    test_id: int
    variant_id: Optional[int] = None
    action: ActivityAction
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    class Config:
        from_attributes = True


class AnalysisResponse(BaseModel):
    """AI-generated narrative about a test's results."""

    summary: str
    recommendation: str
