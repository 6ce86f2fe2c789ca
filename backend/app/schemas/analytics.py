"""Analytics ingestion and query schemas."""
from pydantic import BaseModel, Field, model_validator
from typing import List, Literal
from datetime import datetime

TimeRange = Literal["1h", "1d", "1w", "1m"]


class AnalyticsPointCreate(BaseModel):
    """One cumulative snapshot for a variant."""

    variant_id: int
    timestamp: datetime
    views: int = Field(..., ge=0)
    conversions: int = Field(..., ge=0)
    interactions: int = Field(0, ge=0)

    @model_validator(mode="after")
    def validate_counters(self):
        if self.conversions > self.views:
            raise ValueError("conversions cannot exceed views")
        return self


class AnalyticsBatchRequest(BaseModel):
    """Batch of snapshots produced by ingestion."""

    points: List[AnalyticsPointCreate] = Field(..., min_length=1, max_length=10000)


class AnalyticsPointResponse(BaseModel):
    """Snapshot as returned by the API."""

    id: int
    test_id: int
    variant_id: int
    timestamp: datetime
    views: int
    conversions: int
    interactions: int

    class Config:
        from_attributes = True


class AnalyticsBatchResponse(BaseModel):
    """Result of an ingestion batch."""

    ingested: int
    evaluated: bool = Field(default=False, description="Whether the optimization engine ran afterwards")
