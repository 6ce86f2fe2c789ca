"""Database models."""
from app.models.test import ABTest, TestStatus
from app.models.variant import Variant, VariantStatus
from app.models.analytics import AnalyticsPoint
from app.models.activity_log import ActivityLogEntry, ActivityAction

__all__ = [
    "ABTest",
    "TestStatus",
    "Variant",
    "VariantStatus",
    "AnalyticsPoint",
    "ActivityLogEntry",
    "ActivityAction",
]
