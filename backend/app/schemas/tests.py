"""Test and variant request/response schemas."""
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import List, Optional, Literal
from datetime import datetime

from app.models.test import TestStatus
from app.models.variant import VariantStatus


class VariantCreate(BaseModel):
    """A variant submitted with a new test."""

    name: str = Field(..., min_length=1, max_length=255)
    video_url: str = Field(..., min_length=1, description="Object path of the uploaded video")
    thumbnail_url: str = Field(..., min_length=1, description="Object path of the thumbnail")
    description: Optional[str] = None


class OptimizationSettings(BaseModel):
    """Autonomous optimization thresholds shared by create and update."""

    autonomous_optimization: bool = False
    min_sample_size: int = Field(100, ge=10, description="Views per variant before the engine acts")
    kill_switch_threshold: float = Field(30, ge=5, le=100, description="Disable if this % below average")
    auto_win_threshold: float = Field(50, ge=10, le=200, description="Promote if uplift exceeds this %")


class TestCreate(OptimizationSettings):
    """Request to create a test with its variants."""

    name: str = Field(..., min_length=1, max_length=255)
    product_name: str = Field(..., min_length=1, max_length=255)
    target_population: int = Field(..., ge=1)
    start_time: datetime
    end_time: datetime
    status: Literal["draft", "running"] = "running"
    variants: List[VariantCreate] = Field(..., min_length=2, max_length=3)

    @model_validator(mode="after")
    def validate_schedule(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Homepage Hero Video A/B Test",
                "product_name": "Summer Collection 2024",
                "target_population": 25000,
                "start_time": "2024-06-01T09:00:00",
                "end_time": "2024-06-15T09:00:00",
                "autonomous_optimization": True,
                "min_sample_size": 100,
                "kill_switch_threshold": 30,
                "auto_win_threshold": 50,
                "variants": [
                    {"name": "Variant A", "video_url": "/objects/a.mp4", "thumbnail_url": "/objects/a.jpg"},
                    {"name": "Variant B", "video_url": "/objects/b.mp4", "thumbnail_url": "/objects/b.jpg"}
                ]
            }
        }


class TestUpdate(BaseModel):
    """Partial update of a draft test. Variants are not editable here."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    product_name: Optional[str] = Field(None, min_length=1, max_length=255)
    target_population: Optional[int] = Field(None, ge=1)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    autonomous_optimization: Optional[bool] = None
    min_sample_size: Optional[int] = Field(None, ge=10)
    kill_switch_threshold: Optional[float] = Field(None, ge=5, le=100)
    auto_win_threshold: Optional[float] = Field(None, ge=10, le=200)


class VariantResponse(BaseModel):
    """Variant as returned by the API."""

    id: int
    test_id: int
    sequence: int
    name: str
    video_url: str
    thumbnail_url: str
    description: Optional[str] = None
    variant_status: VariantStatus
    status_reason: Optional[str] = None

    class Config:
        from_attributes = True


class TestResponse(BaseModel):
    """Test summary (list view)."""

    id: int
    name: str
    product_name: str
    target_population: int
    status: TestStatus
    start_time: datetime
    end_time: datetime
    autonomous_optimization: bool
    min_sample_size: int
    kill_switch_threshold: float
    auto_win_threshold: float
    winner_variant_id: Optional[int] = None
    is_mock: bool
    conversion_uplift: Optional[float] = Field(None, description="Leading variant vs control, in percent")

    class Config:
        from_attributes = True


class TestDetailResponse(TestResponse):
    """Test with its variants in control-first order."""

    variants: List[VariantResponse]


class ApplyWinnerRequest(BaseModel):
    """Manually select the winning variant."""

    winner_variant_id: int


class VariantStatusUpdate(BaseModel):
    """Manual override of a variant's status."""

    variant_status: Literal["active", "disabled"]  # winners go through apply-winner
    status_reason: Optional[str] = Field(None, max_length=1000)

    @field_validator("status_reason")
    @classmethod
    def strip_reason(cls, v):
        return v.strip() if v else v
