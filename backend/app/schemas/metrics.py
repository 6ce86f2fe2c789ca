"""Dashboard metric schemas."""
from pydantic import BaseModel, Field


class AggregateMetricsResponse(BaseModel):
    """Totals across all tests."""

    total_tests: int
    running_tests: int
    winners_applied: int
    total_reach: int = Field(..., description="Sum of target populations")
    total_views: int = Field(..., description="Latest cumulative views, all variants")
    total_conversions: int
    total_conversion_uplift: float = Field(..., description="Sum of per-test uplift over control, in percent")

    class Config:
        json_schema_extra = {
            "example": {
                "total_tests": 3,
                "running_tests": 2,
                "winners_applied": 1,
                "total_reach": 60000,
                "total_views": 48210,
                "total_conversions": 1731,
                "total_conversion_uplift": 84.6
            }
        }
