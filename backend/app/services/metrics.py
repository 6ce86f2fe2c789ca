"""Dashboard metrics: per-test conversion uplift and totals across tests."""
from typing import Any, Dict, List, Optional
import structlog

from app.models.test import ABTest, TestStatus
from app.models.variant import VariantStatus
from app.services.optimizer import MIN_CONVERSION_RATE, VariantStats, latest_snapshots, variant_stats
from app.services.storage import ABTestStorage, DEFAULT_TIME_RANGE

logger = structlog.get_logger()


def conversion_uplift(test: ABTest, stats: List[VariantStats]) -> Optional[float]:
    """
    Uplift (percent) of the leading variant over the control.

    The leading variant is the applied winner when there is one (the control
    itself gives 0), otherwise the best active challenger. Same formula as
    the auto-win rule.

    Returns:
        Uplift in percent, or None without a challenger or a usable control rate
    """
    if len(stats) < 2:
        return None

    control = stats[0]
    if control.views == 0 or control.conversion_rate <= MIN_CONVERSION_RATE:
        return None

    if test.winner_variant_id is not None:
        leading = next((s for s in stats if s.variant.id == test.winner_variant_id), None)
    else:
        active = [
            s for s in stats[1:]
            if s.variant.variant_status == VariantStatus.ACTIVE and s.views > 0
        ]
        leading = max(active, key=lambda s: s.conversion_rate, default=None)

    if leading is None:
        return None
    return (leading.conversion_rate - control.conversion_rate) / control.conversion_rate * 100


class MetricsService:
    """Read-only summaries over stored tests and their latest snapshots."""

    def __init__(self, storage: ABTestStorage, time_range: str = DEFAULT_TIME_RANGE):
        self.storage = storage
        self.time_range = time_range

    def variant_stats(self, test: ABTest) -> List[VariantStats]:
        """Latest numbers for every variant of a test, control first."""
        latest = latest_snapshots(self.storage.get_analytics(test.id, self.time_range))
        return [variant_stats(variant, latest) for variant in test.variants]

    def test_uplift(self, test: ABTest) -> Optional[float]:
        return conversion_uplift(test, self.variant_stats(test))

    def aggregate(self) -> Dict[str, Any]:
        """
        Totals across all tests for the dashboard.

        ``total_conversion_uplift`` sums the per-test uplifts that can be
        computed; tests without one contribute nothing.
        """
        totals = {
            "total_tests": 0,
            "running_tests": 0,
            "winners_applied": 0,
            "total_reach": 0,
            "total_views": 0,
            "total_conversions": 0,
            "total_conversion_uplift": 0.0,
        }

        for test in self.storage.list_tests():
            stats = self.variant_stats(test)
            uplift = conversion_uplift(test, stats)

            totals["total_tests"] += 1
            if test.status == TestStatus.RUNNING:
                totals["running_tests"] += 1
            elif test.status == TestStatus.WINNER_APPLIED:
                totals["winners_applied"] += 1
            totals["total_reach"] += test.target_population
            totals["total_views"] += sum(s.views for s in stats)
            totals["total_conversions"] += sum(s.conversions for s in stats)
            if uplift is not None:
                totals["total_conversion_uplift"] += uplift

        logger.debug("metrics_aggregated", total_tests=totals["total_tests"])
        return totals
