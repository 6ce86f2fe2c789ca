"""Persistence layer for tests, variants, analytics and the activity log."""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
import structlog

from app.models.test import ABTest, TestStatus
from app.models.variant import Variant, VariantStatus
from app.models.analytics import AnalyticsPoint
from app.models.activity_log import ActivityLogEntry, ActivityAction
from app.schemas.tests import TestCreate
from app.schemas.analytics import AnalyticsPointCreate

logger = structlog.get_logger()

_EPOCH = datetime(1970, 1, 1)

# time range -> (window length, bucket size)
TIME_RANGES = {
    "1h": (timedelta(hours=1), timedelta(minutes=15)),
    "1d": (timedelta(days=1), timedelta(hours=2)),
    "1w": (timedelta(weeks=1), timedelta(days=1)),
    "1m": (timedelta(days=30), timedelta(weeks=1)),
}
DEFAULT_TIME_RANGE = "1m"


def to_naive_utc(value: datetime) -> datetime:
    """Timestamps are stored as naive UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class CounterRegression(ValueError):
    """Raised when a snapshot would make cumulative counters go backwards."""
    pass


class ABTestStorage:
    """
    Storage collaborator used by the API and the optimization engine.

    Every write commits on its own. A failed write rolls back the pending
    transaction and re-raises; writes committed earlier stay applied.
    """

    def __init__(self, db: Session):
        self.db = db

    def _commit(self, operation: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("storage_write_failed", operation=operation, error=str(e))
            raise

    # Tests

    def list_tests(self) -> List[ABTest]:
        """All tests ordered by id."""
        return self.db.query(ABTest).order_by(ABTest.id.asc()).all()

    def get_test(self, test_id: int) -> Optional[ABTest]:
        """Get a test with its variants (control first)."""
        return self.db.query(ABTest).options(
            selectinload(ABTest.variants)
        ).filter(ABTest.id == test_id).first()

    def create_test(self, data: TestCreate, is_mock: bool = False) -> ABTest:
        """
        Create a test and its variants.

        Variants get their sequence from submission order, so the first
        submitted variant is the control.
        """
        test = ABTest(
            name=data.name,
            product_name=data.product_name,
            target_population=data.target_population,
            start_time=to_naive_utc(data.start_time),
            end_time=to_naive_utc(data.end_time),
            status=TestStatus(data.status),
            autonomous_optimization=data.autonomous_optimization,
            min_sample_size=data.min_sample_size,
            kill_switch_threshold=data.kill_switch_threshold,
            auto_win_threshold=data.auto_win_threshold,
            is_mock=is_mock
        )
        for sequence, variant in enumerate(data.variants):
            test.variants.append(Variant(
                sequence=sequence,
                name=variant.name,
                video_url=variant.video_url,
                thumbnail_url=variant.thumbnail_url,
                description=variant.description
            ))

        self.db.add(test)
        self._commit("create_test")
        self.db.refresh(test)
        return test

    def update_test(self, test_id: int, changes: Dict[str, Any]) -> Optional[ABTest]:
        """Apply a partial update to a test's configuration."""
        test = self.get_test(test_id)
        if not test:
            return None

        for field, value in changes.items():
            if isinstance(value, datetime):
                value = to_naive_utc(value)
            setattr(test, field, value)

        self._commit("update_test")
        self.db.refresh(test)
        return test

    def update_test_status(self, test_id: int, status: TestStatus) -> Optional[ABTest]:
        """Move a test to another lifecycle status."""
        test = self.get_test(test_id)
        if not test:
            return None

        test.status = status
        self._commit("update_test_status")
        self.db.refresh(test)
        return test

    def update_test_winner(self, test_id: int, winner_variant_id: int) -> Optional[ABTest]:
        """Record the winning variant and mark the test as winner_applied."""
        test = self.get_test(test_id)
        if not test:
            return None

        test.winner_variant_id = winner_variant_id
        test.status = TestStatus.WINNER_APPLIED
        self._commit("update_test_winner")
        self.db.refresh(test)
        return test

    # Variants

    def update_variant_status(
        self,
        variant_id: int,
        status: VariantStatus,
        reason: Optional[str]
    ) -> Optional[Variant]:
        """Set a variant's status and the explanation shown to operators."""
        variant = self.db.query(Variant).filter(Variant.id == variant_id).first()
        if not variant:
            return None

        variant.variant_status = status
        variant.status_reason = reason
        self._commit("update_variant_status")
        self.db.refresh(variant)
        return variant

    # Analytics

    def get_analytics(
        self,
        test_id: int,
        time_range: str = DEFAULT_TIME_RANGE,
        now: Optional[datetime] = None
    ) -> List[AnalyticsPoint]:
        """
        Get cumulative snapshots for a test within a rolling window.

        Points are grouped per variant into fixed-size time buckets and only
        the latest point of each bucket is kept. Since counters are
        cumulative, that point carries the bucket's totals.

        Args:
            test_id: Test to query
            time_range: One of "1h", "1d", "1w", "1m" (unknown values fall back to "1m")
            now: Window end, defaults to the current UTC time

        Returns:
            Snapshots sorted by timestamp ascending
        """
        window, bucket = TIME_RANGES.get(time_range, TIME_RANGES[DEFAULT_TIME_RANGE])
        end = to_naive_utc(now) if now else datetime.utcnow()
        start = end - window

        points = self.db.query(AnalyticsPoint).filter(
            AnalyticsPoint.test_id == test_id,
            AnalyticsPoint.timestamp >= start
        ).order_by(AnalyticsPoint.timestamp.asc(), AnalyticsPoint.id.asc()).all()

        if not points:
            return []

        bucket_seconds = bucket.total_seconds()
        latest_per_bucket: Dict[tuple, AnalyticsPoint] = {}
        for point in points:
            bucket_index = int((point.timestamp - _EPOCH).total_seconds() // bucket_seconds)
            # Later points overwrite earlier ones within the same bucket
            latest_per_bucket[(point.variant_id, bucket_index)] = point

        return sorted(latest_per_bucket.values(), key=lambda p: p.timestamp)

    def validate_cumulative(self, points: List[AnalyticsPointCreate]) -> None:
        """
        Check that a batch keeps every variant's counters non-decreasing over time.

        Each variant's new points are merged with its stored snapshots in the
        batch's time span (plus the nearest stored snapshot on either side)
        and the merged series must never go down.

        Raises:
            CounterRegression: If views, conversions or interactions would decrease
        """
        by_variant: Dict[int, List[AnalyticsPointCreate]] = {}
        for point in points:
            by_variant.setdefault(point.variant_id, []).append(point)

        for variant_id, new_points in by_variant.items():
            timestamps = [to_naive_utc(p.timestamp) for p in new_points]
            first, last = min(timestamps), max(timestamps)

            query = self.db.query(AnalyticsPoint).filter(AnalyticsPoint.variant_id == variant_id)
            stored = query.filter(
                AnalyticsPoint.timestamp >= first,
                AnalyticsPoint.timestamp <= last
            ).all()
            before = query.filter(AnalyticsPoint.timestamp < first).order_by(
                AnalyticsPoint.timestamp.desc(), AnalyticsPoint.id.desc()
            ).first()
            after = query.filter(AnalyticsPoint.timestamp > last).order_by(
                AnalyticsPoint.timestamp.asc(), AnalyticsPoint.id.asc()
            ).first()
            stored.extend(p for p in (before, after) if p is not None)

            # (timestamp, stored-before-new, counters)
            series = [(p.timestamp, 0, (p.views, p.conversions, p.interactions)) for p in stored]
            series.extend(
                (timestamp, 1, (p.views, p.conversions, p.interactions))
                for timestamp, p in zip(timestamps, new_points)
            )
            series.sort(key=lambda entry: (entry[0], entry[1]))

            for (_, _, previous), (timestamp, _, current) in zip(series, series[1:]):
                if any(c < p for c, p in zip(current, previous)):
                    raise CounterRegression(
                        f"Counters for variant {variant_id} decrease at {timestamp.isoformat()}"
                    )

    def create_analytics_batch(self, test_id: int, points: List[AnalyticsPointCreate]) -> int:
        """Append a batch of cumulative snapshots. Returns the number stored."""
        if not points:
            return 0

        self.db.add_all([
            AnalyticsPoint(
                test_id=test_id,
                variant_id=point.variant_id,
                timestamp=to_naive_utc(point.timestamp),
                views=point.views,
                conversions=point.conversions,
                interactions=point.interactions
            )
            for point in points
        ])
        self._commit("create_analytics_batch")
        return len(points)

    # Activity log

    def create_activity_log_entry(
        self,
        test_id: int,
        action: ActivityAction,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        variant_id: Optional[int] = None
    ) -> ActivityLogEntry:
        """Append an audit entry. Entries are never updated or deleted."""
        entry = ActivityLogEntry(
            test_id=test_id,
            variant_id=variant_id,
            action=action,
            message=message,
            details=details or {}
        )
        self.db.add(entry)
        self._commit("create_activity_log_entry")
        self.db.refresh(entry)
        return entry

    def get_activity_log(self, test_id: int, limit: int = 100) -> List[ActivityLogEntry]:
        """Audit entries for a test, newest first."""
        return self.db.query(ActivityLogEntry).filter(
            ActivityLogEntry.test_id == test_id
        ).order_by(
            ActivityLogEntry.created_at.desc(),
            ActivityLogEntry.id.desc()
        ).limit(limit).all()
