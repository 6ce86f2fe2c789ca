"""Autonomous optimization engine.

Reads a running test's configuration and cumulative analytics, disables
variants that fall too far below the average (kill switch) and promotes a
challenger that beats the control by a significant margin (auto-win).

Each call runs to completion synchronously. The engine holds no state
between calls and does no locking; callers that may trigger overlapping
evaluations of the same test must serialize them (see EvaluationLock).
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import structlog

from app.models.test import ABTest, TestStatus
from app.models.variant import Variant, VariantStatus
from app.models.analytics import AnalyticsPoint
from app.models.activity_log import ActivityAction
from app.services.significance import calculate_significance
from app.services.storage import ABTestStorage, DEFAULT_TIME_RANGE

logger = structlog.get_logger()

# Conversion rates (in percent) at or below this are treated as zero
MIN_CONVERSION_RATE = 0.001


@dataclass
class VariantStats:
    """Latest cumulative numbers for one variant."""
    variant: Variant
    views: int = 0
    conversions: int = 0

    @property
    def conversion_rate(self) -> float:
        """Conversion rate in percent."""
        if self.views > 0:
            return self.conversions / self.views * 100
        return 0.0


@dataclass
class EvaluationResult:
    """What one evaluation pass did (or why it did nothing)."""
    test_id: int
    skipped_reason: Optional[str] = None
    disabled_variant_ids: List[int] = field(default_factory=list)
    winner_variant_id: Optional[int] = None

    @property
    def acted(self) -> bool:
        return bool(self.disabled_variant_ids) or self.winner_variant_id is not None


def latest_snapshots(points: List[AnalyticsPoint]) -> Dict[int, AnalyticsPoint]:
    """Most recent snapshot per variant."""
    latest: Dict[int, AnalyticsPoint] = {}
    for point in points:
        current = latest.get(point.variant_id)
        if current is None or point.timestamp >= current.timestamp:
            latest[point.variant_id] = point
    return latest


def variant_stats(variant: Variant, latest: Dict[int, AnalyticsPoint]) -> VariantStats:
    """Stats for a variant from its latest snapshot (zeros if it has none)."""
    point = latest.get(variant.id)
    if point is None:
        return VariantStats(variant=variant)
    return VariantStats(variant=variant, views=point.views, conversions=point.conversions)


class OptimizationEngine:
    """Applies kill-switch and auto-win rules to a test."""

    TEST_NOT_FOUND = "test_not_found"
    OPTIMIZATION_DISABLED = "optimization_disabled"
    TEST_NOT_RUNNING = "test_not_running"
    INSUFFICIENT_ACTIVE_VARIANTS = "insufficient_active_variants"
    INSUFFICIENT_SAMPLE_SIZE = "insufficient_sample_size"
    ZERO_AVERAGE_RATE = "zero_average_conversion_rate"
    ZERO_CONTROL_RATE = "zero_control_conversion_rate"

    def __init__(self, storage: ABTestStorage, time_range: str = DEFAULT_TIME_RANGE):
        self.storage = storage
        self.time_range = time_range

    def evaluate(self, test_id: int, record_evaluation: bool = False) -> EvaluationResult:
        """
        Run one optimization pass over a test.

        Missing tests and not-enough-data situations are not errors: the
        pass returns a result with ``skipped_reason`` set and writes nothing.
        Storage failures propagate to the caller; status changes committed
        before the failure remain applied, and re-running is safe because
        disabled or winning variants are no longer active.

        Args:
            test_id: Test to evaluate
            record_evaluation: Append an "evaluation" entry to the activity
                log describing the outcome (used by manual triggers)

        Returns:
            EvaluationResult summarising the actions taken
        """
        test = self.storage.get_test(test_id)
        if not test:
            logger.info("evaluation_skipped", test_id=test_id, reason=self.TEST_NOT_FOUND)
            return EvaluationResult(test_id=test_id, skipped_reason=self.TEST_NOT_FOUND)

        result = self._run(test)

        if result.skipped_reason:
            logger.info("evaluation_skipped", test_id=test_id, reason=result.skipped_reason)
        else:
            logger.info(
                "evaluation_completed",
                test_id=test_id,
                disabled_variant_ids=result.disabled_variant_ids,
                winner_variant_id=result.winner_variant_id
            )

        if record_evaluation:
            self._record_evaluation(test, result)

        return result

    def _run(self, test: ABTest) -> EvaluationResult:
        result = EvaluationResult(test_id=test.id)

        if not test.autonomous_optimization:
            result.skipped_reason = self.OPTIMIZATION_DISABLED
            return result
        if test.status != TestStatus.RUNNING:
            result.skipped_reason = self.TEST_NOT_RUNNING
            return result

        active = [v for v in test.variants if v.variant_status == VariantStatus.ACTIVE]
        if len(active) < 2:
            result.skipped_reason = self.INSUFFICIENT_ACTIVE_VARIANTS
            return result

        latest = latest_snapshots(self.storage.get_analytics(test.id, self.time_range))
        stats = [variant_stats(variant, latest) for variant in active]

        if any(s.views < test.min_sample_size for s in stats):
            result.skipped_reason = self.INSUFFICIENT_SAMPLE_SIZE
            return result

        average_rate = sum(s.conversion_rate for s in stats) / len(stats)
        if average_rate <= MIN_CONVERSION_RATE:
            result.skipped_reason = self.ZERO_AVERAGE_RATE
            return result

        control = variant_stats(test.control, latest)
        if control.conversion_rate <= MIN_CONVERSION_RATE:
            result.skipped_reason = self.ZERO_CONTROL_RATE
            return result

        for candidate in stats:
            if candidate.variant.id == control.variant.id:
                continue
            if self._apply_kill_switch(test, candidate, average_rate):
                result.disabled_variant_ids.append(candidate.variant.id)

        # Candidates are the variants that were active when the pass started
        best = stats[0]
        for candidate in stats[1:]:
            if candidate.conversion_rate > best.conversion_rate:
                best = candidate

        if best.variant.id != control.variant.id and self._apply_auto_win(test, best, control):
            result.winner_variant_id = best.variant.id

        return result

    def _apply_kill_switch(self, test: ABTest, stats: VariantStats, average_rate: float) -> bool:
        """Disable a variant that underperforms the average by at least the threshold."""
        rate = stats.conversion_rate
        underperformance = (average_rate - rate) / average_rate * 100
        threshold = test.kill_switch_threshold

        if underperformance < threshold:
            return False

        reason = (
            f"Auto-disabled: {underperformance:.1f}% below average conversion rate "
            f"(kill switch threshold {threshold:g}%)"
        )
        self.storage.update_variant_status(stats.variant.id, VariantStatus.DISABLED, reason)
        self.storage.create_activity_log_entry(
            test_id=test.id,
            variant_id=stats.variant.id,
            action=ActivityAction.DISABLED_VARIANT,
            message=f"Disabled {stats.variant.name}: {rate:.2f}% vs {average_rate:.2f}% average",
            details={
                "variantConversionRate": rate,
                "averageConversionRate": average_rate,
                "threshold": threshold,
                "underperformance": underperformance,
            }
        )

        logger.info(
            "variant_disabled",
            test_id=test.id,
            variant_id=stats.variant.id,
            conversion_rate=round(rate, 4),
            average_conversion_rate=round(average_rate, 4),
            underperformance=round(underperformance, 2),
            threshold=threshold
        )
        return True

    def _apply_auto_win(self, test: ABTest, best: VariantStats, control: VariantStats) -> bool:
        """Promote the best challenger if its uplift is large enough and significant."""
        uplift = (best.conversion_rate - control.conversion_rate) / control.conversion_rate * 100
        significance = calculate_significance(
            control.conversions, control.views,
            best.conversions, best.views
        )
        threshold = test.auto_win_threshold

        if uplift < threshold or not significance.significant:
            logger.debug(
                "auto_win_not_met",
                test_id=test.id,
                variant_id=best.variant.id,
                uplift=round(uplift, 2),
                threshold=threshold,
                p_value=significance.p_value
            )
            return False

        reason = (
            f"Auto-promoted: {uplift:.1f}% uplift over control "
            f"with {significance.confidence:.1f}% confidence"
        )
        self.storage.update_variant_status(best.variant.id, VariantStatus.WINNER, reason)
        self.storage.update_test_winner(test.id, best.variant.id)
        self.storage.create_activity_log_entry(
            test_id=test.id,
            variant_id=best.variant.id,
            action=ActivityAction.PROMOTED_WINNER,
            message=(
                f"Promoted {best.variant.name} as winner: "
                f"{best.conversion_rate:.2f}% vs {control.conversion_rate:.2f}% control"
            ),
            details={
                "winnerConversionRate": best.conversion_rate,
                "controlConversionRate": control.conversion_rate,
                "uplift": uplift,
                "confidence": significance.confidence,
                "threshold": threshold,
            }
        )

        logger.info(
            "winner_promoted",
            test_id=test.id,
            variant_id=best.variant.id,
            uplift=round(uplift, 2),
            confidence=round(significance.confidence, 2),
            threshold=threshold
        )
        return True

    def _record_evaluation(self, test: ABTest, result: EvaluationResult) -> None:
        if result.skipped_reason:
            message = f"Evaluation ran with no action: {result.skipped_reason.replace('_', ' ')}"
        else:
            actions = len(result.disabled_variant_ids) + (1 if result.winner_variant_id else 0)
            message = f"Evaluation completed with {actions} action(s)"

        self.storage.create_activity_log_entry(
            test_id=test.id,
            action=ActivityAction.EVALUATION,
            message=message,
            details={
                "skippedReason": result.skipped_reason or "",
                "disabledVariants": len(result.disabled_variant_ids),
                "winnerPromoted": 1 if result.winner_variant_id else 0,
            }
        )
