"""Test management endpoints."""
from fastapi import APIRouter, Depends, HTTPException
from typing import List

from app.schemas.tests import (
    TestCreate,
    TestUpdate,
    TestResponse,
    TestDetailResponse,
    VariantResponse,
    ApplyWinnerRequest,
    VariantStatusUpdate,
)
from app.models.test import TestStatus
from app.models.variant import VariantStatus
from app.models.activity_log import ActivityAction
from app.services.metrics import MetricsService
from app.services.storage import ABTestStorage, to_naive_utc
from app.api.deps import get_storage, get_metrics
from app.middleware.logging import get_logger

router = APIRouter(prefix="/api/tests")
logger = get_logger()


def get_test_or_404(storage: ABTestStorage, test_id: int):
    test = storage.get_test(test_id)
    if not test:
        raise HTTPException(status_code=404, detail="Test not found")
    return test


def with_uplift(schema, test, metrics: MetricsService):
    """Serialize a test and attach its current conversion uplift."""
    response = schema.model_validate(test)
    response.conversion_uplift = metrics.test_uplift(test)
    return response


@router.get("", response_model=List[TestResponse])
async def list_tests(
    storage: ABTestStorage = Depends(get_storage),
    metrics: MetricsService = Depends(get_metrics)
):
    """List all tests with their current conversion uplift."""
    return [with_uplift(TestResponse, test, metrics) for test in storage.list_tests()]


@router.get("/{test_id}", response_model=TestDetailResponse)
async def get_test(
    test_id: int,
    storage: ABTestStorage = Depends(get_storage),
    metrics: MetricsService = Depends(get_metrics)
):
    """Get a test with its variants (control first)."""
    return with_uplift(TestDetailResponse, get_test_or_404(storage, test_id), metrics)


@router.post("", response_model=TestDetailResponse, status_code=201)
async def create_test(request: TestCreate, storage: ABTestStorage = Depends(get_storage)):
    """
    Create a test with 2-3 variants.

    The first variant in the request becomes the control.
    """
    test = storage.create_test(request)

    logger.info(
        "test_created",
        test_id=test.id,
        variants=len(test.variants),
        autonomous_optimization=test.autonomous_optimization
    )
    return test


@router.patch("/{test_id}", response_model=TestDetailResponse)
async def update_test(
    test_id: int,
    request: TestUpdate,
    storage: ABTestStorage = Depends(get_storage),
    metrics: MetricsService = Depends(get_metrics)
):
    """Edit a test's configuration. Only draft tests can be edited."""
    test = get_test_or_404(storage, test_id)
    if test.status != TestStatus.DRAFT:
        raise HTTPException(status_code=400, detail="Can only edit draft tests")

    changes = request.model_dump(exclude_unset=True, exclude_none=True)
    start_time = changes.get("start_time", test.start_time)
    end_time = changes.get("end_time", test.end_time)
    if to_naive_utc(end_time) <= to_naive_utc(start_time):
        raise HTTPException(status_code=400, detail="end_time must be after start_time")

    updated = storage.update_test(test_id, changes)
    logger.info("test_updated", test_id=test_id, fields=sorted(changes))
    return with_uplift(TestDetailResponse, updated, metrics)


@router.post("/{test_id}/start", response_model=TestResponse)
async def start_test(
    test_id: int,
    storage: ABTestStorage = Depends(get_storage),
    metrics: MetricsService = Depends(get_metrics)
):
    """Start a draft test."""
    test = get_test_or_404(storage, test_id)
    if test.status != TestStatus.DRAFT:
        raise HTTPException(status_code=400, detail=f"Cannot start a test in status '{test.status.value}'")

    updated = storage.update_test_status(test_id, TestStatus.RUNNING)
    logger.info("test_started", test_id=test_id)
    return with_uplift(TestResponse, updated, metrics)


@router.post("/{test_id}/apply-winner", response_model=TestDetailResponse)
async def apply_winner(
    test_id: int,
    request: ApplyWinnerRequest,
    storage: ABTestStorage = Depends(get_storage),
    metrics: MetricsService = Depends(get_metrics)
):
    """
    Manually select the winning variant.

    Rejected once a winner has been applied, so a test never has two winners.
    """
    test = get_test_or_404(storage, test_id)
    if test.status == TestStatus.WINNER_APPLIED:
        raise HTTPException(status_code=400, detail="A winner has already been applied to this test")
    if request.winner_variant_id not in {v.id for v in test.variants}:
        raise HTTPException(status_code=400, detail="winner_variant_id does not belong to this test")

    storage.update_variant_status(request.winner_variant_id, VariantStatus.WINNER, "Manually selected as winner")
    storage.update_test_winner(test_id, request.winner_variant_id)
    storage.create_activity_log_entry(
        test_id=test_id,
        variant_id=request.winner_variant_id,
        action=ActivityAction.PROMOTED_WINNER,
        message="Winner applied manually",
        details={"source": "manual"}
    )

    logger.info("winner_applied", test_id=test_id, variant_id=request.winner_variant_id, source="manual")
    return with_uplift(TestDetailResponse, storage.get_test(test_id), metrics)


@router.patch("/{test_id}/variants/{variant_id}/status", response_model=VariantResponse)
async def update_variant_status(
    test_id: int,
    variant_id: int,
    request: VariantStatusUpdate,
    storage: ABTestStorage = Depends(get_storage)
):
    """
    Manually override a variant's status.

    Re-activating a variant makes it eligible for the optimization engine again.
    The applied winner cannot be overridden.
    """
    test = get_test_or_404(storage, test_id)
    if variant_id not in {v.id for v in test.variants}:
        raise HTTPException(status_code=404, detail="Variant not found in this test")
    if variant_id == test.winner_variant_id:
        raise HTTPException(status_code=400, detail="Cannot change the status of the applied winner")

    status = VariantStatus(request.variant_status)
    reason = request.status_reason or (
        "Manually disabled" if status == VariantStatus.DISABLED else None
    )
    variant = storage.update_variant_status(variant_id, status, reason)

    if status == VariantStatus.DISABLED:
        storage.create_activity_log_entry(
            test_id=test_id,
            variant_id=variant_id,
            action=ActivityAction.DISABLED_VARIANT,
            message=f"Disabled {variant.name} manually",
            details={"source": "manual"}
        )

    logger.info("variant_status_overridden", test_id=test_id, variant_id=variant_id, status=status.value)
    return variant
