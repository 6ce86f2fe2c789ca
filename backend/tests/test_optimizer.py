"""Tests for the autonomous optimization engine."""
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.models.activity_log import ActivityAction
from app.models.variant import VariantStatus
from app.services.optimizer import OptimizationEngine


def actions(storage, test_id):
    return [entry.action for entry in storage.get_activity_log(test_id)]


def test_end_to_end_promotes_significant_winner(storage, make_test, record):
    """Test 3% control vs 4.8% challenger: 60% uplift, significant, promoted."""
    ab_test = make_test(min_sample_size=100, kill_switch_threshold=30, auto_win_threshold=50)
    control, challenger = ab_test.variants
    record(ab_test, control, 1000, 30)
    record(ab_test, challenger, 1000, 48)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.skipped_reason is None
    assert result.winner_variant_id == challenger.id
    assert result.disabled_variant_ids == []

    ab_test = storage.get_test(ab_test.id)
    assert ab_test.status == "winner_applied"
    assert ab_test.winner_variant_id == challenger.id
    assert ab_test.variants[1].variant_status == VariantStatus.WINNER
    assert "60.0% uplift" in ab_test.variants[1].status_reason
    assert ab_test.variants[0].variant_status == VariantStatus.ACTIVE

    log = storage.get_activity_log(ab_test.id)
    assert len(log) == 1
    assert log[0].action == ActivityAction.PROMOTED_WINNER
    assert log[0].variant_id == challenger.id
    assert log[0].details["uplift"] == pytest.approx(60.0)
    assert log[0].details["winnerConversionRate"] == pytest.approx(4.8)
    assert log[0].details["controlConversionRate"] == pytest.approx(3.0)
    assert log[0].details["threshold"] == 50
    assert log[0].details["confidence"] > 95


def test_kill_switch_fires_just_below_boundary(storage, make_test, record):
    """Test that underperformance just above the threshold disables the variant.

    With two variants the underperformance is (c - v) / (c + v):
    10% vs 5.3% gives 30.7% >= 30%.
    """
    ab_test = make_test(kill_switch_threshold=30)
    control, challenger = ab_test.variants
    record(ab_test, control, 1000, 100)
    record(ab_test, challenger, 1000, 53)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.disabled_variant_ids == [challenger.id]
    variant = storage.get_test(ab_test.id).variants[1]
    assert variant.variant_status == VariantStatus.DISABLED
    assert "30.7% below average" in variant.status_reason
    assert "threshold 30%" in variant.status_reason

    entry = storage.get_activity_log(ab_test.id)[0]
    assert entry.action == ActivityAction.DISABLED_VARIANT
    assert entry.details["variantConversionRate"] == pytest.approx(5.3)
    assert entry.details["averageConversionRate"] == pytest.approx(7.65)
    assert entry.details["threshold"] == 30
    assert entry.details["underperformance"] == pytest.approx(30.719, abs=0.01)


def test_kill_switch_spares_variant_just_above_boundary(storage, make_test, record):
    """Test that 10% vs 5.5% (29.0% underperformance) stays active."""
    ab_test = make_test(kill_switch_threshold=30)
    control, challenger = ab_test.variants
    record(ab_test, control, 1000, 100)
    record(ab_test, challenger, 1000, 55)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.disabled_variant_ids == []
    assert storage.get_test(ab_test.id).variants[1].variant_status == VariantStatus.ACTIVE
    assert actions(storage, ab_test.id) == []


def test_kill_switch_boundary_is_inclusive(storage, make_test, record):
    """Test that underperformance exactly at the threshold disables the variant.

    18.75% vs 6.25% on 1024 views each gives a 12.5% average and exactly
    50.0% underperformance; these rates are exact in binary floating point.
    """
    ab_test = make_test(kill_switch_threshold=50)
    control, challenger = ab_test.variants
    record(ab_test, control, 1024, 192)
    record(ab_test, challenger, 1024, 64)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.disabled_variant_ids == [challenger.id]
    entry = storage.get_activity_log(ab_test.id)[0]
    assert entry.details["averageConversionRate"] == 12.5
    assert entry.details["underperformance"] == 50.0
    assert entry.details["threshold"] == 50


def test_control_is_never_disabled(storage, make_test, record):
    """Test that a control far below average is exempt from the kill switch."""
    ab_test = make_test(auto_win_threshold=200)
    control, challenger = ab_test.variants
    record(ab_test, control, 1000, 10)  # 1%, 66% below the 3% average
    record(ab_test, challenger, 1000, 50)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.disabled_variant_ids == []
    assert storage.get_test(ab_test.id).variants[0].variant_status == VariantStatus.ACTIVE
    assert ActivityAction.DISABLED_VARIANT not in actions(storage, ab_test.id)


def test_auto_win_requires_significance(storage, make_test, record):
    """Test that a 100% uplift on tiny samples does not promote a winner."""
    ab_test = make_test(min_sample_size=100, auto_win_threshold=50)
    control, challenger = ab_test.variants
    record(ab_test, control, 100, 2)
    record(ab_test, challenger, 100, 4)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.winner_variant_id is None
    ab_test = storage.get_test(ab_test.id)
    assert ab_test.status == "running"
    assert ab_test.winner_variant_id is None
    assert ab_test.variants[1].variant_status == VariantStatus.ACTIVE


def test_auto_win_requires_uplift_threshold(storage, make_test, record):
    """Test that a significant but small (15%) uplift does not promote a winner."""
    ab_test = make_test(auto_win_threshold=50)
    control, challenger = ab_test.variants
    record(ab_test, control, 10000, 1000)
    record(ab_test, challenger, 10000, 1150)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.winner_variant_id is None
    assert storage.get_test(ab_test.id).status == "running"
    assert actions(storage, ab_test.id) == []


def test_minimum_sample_size_gates_all_actions(storage, make_test, record):
    """Test that one variant below min_sample_size blocks both rules."""
    ab_test = make_test(variants=3, min_sample_size=100)
    control, strong, weak = ab_test.variants
    record(ab_test, control, 1000, 30)
    record(ab_test, strong, 1000, 90)
    record(ab_test, weak, 99, 0)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.skipped_reason == OptimizationEngine.INSUFFICIENT_SAMPLE_SIZE
    assert not result.acted
    assert all(v.variant_status == VariantStatus.ACTIVE for v in storage.get_test(ab_test.id).variants)
    assert actions(storage, ab_test.id) == []


def test_variant_without_analytics_gates_actions(storage, make_test, record):
    """Test that a variant with no snapshots counts as zero views."""
    ab_test = make_test()
    control, _ = ab_test.variants
    record(ab_test, control, 1000, 30)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.skipped_reason == OptimizationEngine.INSUFFICIENT_SAMPLE_SIZE


def test_snapshots_outside_window_are_ignored(storage, make_test, record):
    """Test that snapshots older than the one-month window do not count."""
    ab_test = make_test()
    control, challenger = ab_test.variants
    record(ab_test, control, 1000, 30, minutes_ago=40 * 24 * 60)
    record(ab_test, challenger, 1000, 48, minutes_ago=40 * 24 * 60)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.skipped_reason == OptimizationEngine.INSUFFICIENT_SAMPLE_SIZE


def test_latest_snapshot_is_used(storage, make_test, record):
    """Test that only the most recent cumulative snapshot per variant matters."""
    ab_test = make_test()
    control, challenger = ab_test.variants
    record(ab_test, control, 50, 1, minutes_ago=3 * 24 * 60)
    record(ab_test, challenger, 50, 2, minutes_ago=3 * 24 * 60)
    record(ab_test, control, 1000, 30, minutes_ago=10)
    record(ab_test, challenger, 1000, 48, minutes_ago=10)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.winner_variant_id == challenger.id


def test_multiple_variants_disabled_in_one_pass(storage, make_test, record):
    """Test that every underperforming challenger is disabled, not just the first."""
    ab_test = make_test(variants=3)
    control, second, third = ab_test.variants
    record(ab_test, control, 1000, 100)
    record(ab_test, second, 1000, 20)
    record(ab_test, third, 1000, 20)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.disabled_variant_ids == [second.id, third.id]
    assert result.winner_variant_id is None
    statuses = [v.variant_status for v in storage.get_test(ab_test.id).variants]
    assert statuses == [VariantStatus.ACTIVE, VariantStatus.DISABLED, VariantStatus.DISABLED]
    assert actions(storage, ab_test.id).count(ActivityAction.DISABLED_VARIANT) == 2


def test_kill_switch_and_auto_win_in_same_pass(storage, make_test, record):
    """Test that a disablement does not prevent promoting a winner in the same pass."""
    ab_test = make_test(variants=3)
    control, strong, weak = ab_test.variants
    record(ab_test, control, 1000, 30)
    record(ab_test, strong, 1000, 60)
    record(ab_test, weak, 1000, 5)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.disabled_variant_ids == [weak.id]
    assert result.winner_variant_id == strong.id

    ab_test = storage.get_test(ab_test.id)
    assert ab_test.status == "winner_applied"
    assert [v.variant_status for v in ab_test.variants] == [
        VariantStatus.ACTIVE, VariantStatus.WINNER, VariantStatus.DISABLED
    ]
    assert sorted(actions(storage, ab_test.id)) == sorted([
        ActivityAction.DISABLED_VARIANT, ActivityAction.PROMOTED_WINNER
    ])


def test_ties_go_to_first_variant(storage, make_test, record):
    """Test that among equally best challengers the earlier one wins."""
    ab_test = make_test(variants=3)
    control, second, third = ab_test.variants
    record(ab_test, control, 1000, 30)
    record(ab_test, second, 1000, 60)
    record(ab_test, third, 1000, 60)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.winner_variant_id == second.id


def test_average_includes_control(storage, make_test, record):
    """Test that underperformance is measured against the average of all active variants.

    Control 9%, B 3%, C 3%: the average including the control is 5%, so
    B and C are 40% below it. Excluding the control the average would be
    3% and nothing would be disabled.
    """
    ab_test = make_test(variants=3, kill_switch_threshold=35)
    control, second, third = ab_test.variants
    record(ab_test, control, 1000, 90)
    record(ab_test, second, 1000, 30)
    record(ab_test, third, 1000, 30)

    OptimizationEngine(storage).evaluate(ab_test.id)

    entry = storage.get_activity_log(ab_test.id)[0]
    assert entry.details["averageConversionRate"] == pytest.approx(5.0)
    assert entry.details["underperformance"] == pytest.approx(40.0)


def test_rerun_after_winner_is_a_no_op(storage, make_test, record):
    """Test that evaluating a winner_applied test changes nothing."""
    ab_test = make_test()
    control, challenger = ab_test.variants
    record(ab_test, control, 1000, 30)
    record(ab_test, challenger, 1000, 48)
    engine = OptimizationEngine(storage)
    engine.evaluate(ab_test.id)

    result = engine.evaluate(ab_test.id)

    assert result.skipped_reason == OptimizationEngine.TEST_NOT_RUNNING
    assert len(storage.get_activity_log(ab_test.id)) == 1


def test_rerun_after_disable_is_a_no_op(storage, make_test, record):
    """Test that a disabled variant is not disabled again on the next pass."""
    ab_test = make_test(variants=3)
    control, second, weak = ab_test.variants
    record(ab_test, control, 1000, 50)
    record(ab_test, second, 1000, 52)
    record(ab_test, weak, 1000, 10)
    engine = OptimizationEngine(storage)

    first = engine.evaluate(ab_test.id)
    second_pass = engine.evaluate(ab_test.id)

    assert first.disabled_variant_ids == [weak.id]
    assert second_pass.disabled_variant_ids == []
    assert second_pass.winner_variant_id is None
    assert len(storage.get_activity_log(ab_test.id)) == 1


def test_missing_test_is_skipped():
    """Test that an unknown test id is a silent no-op."""
    storage = MagicMock()
    storage.get_test.return_value = None

    result = OptimizationEngine(storage).evaluate(404, record_evaluation=True)

    assert result.skipped_reason == OptimizationEngine.TEST_NOT_FOUND
    storage.get_analytics.assert_not_called()
    storage.create_activity_log_entry.assert_not_called()


def test_optimization_disabled_is_skipped(storage, make_test, record):
    """Test that tests without autonomous optimization are left alone."""
    ab_test = make_test(autonomous_optimization=False)
    control, challenger = ab_test.variants
    record(ab_test, control, 1000, 30)
    record(ab_test, challenger, 1000, 90)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.skipped_reason == OptimizationEngine.OPTIMIZATION_DISABLED
    assert storage.get_test(ab_test.id).status == "running"


def test_draft_test_is_skipped(storage, make_test, record):
    """Test that only running tests are evaluated."""
    ab_test = make_test(status="draft")
    control, challenger = ab_test.variants
    record(ab_test, control, 1000, 30)
    record(ab_test, challenger, 1000, 90)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.skipped_reason == OptimizationEngine.TEST_NOT_RUNNING


def test_single_active_variant_is_skipped(storage, make_test, record):
    """Test that fewer than two active variants means nothing to compare."""
    ab_test = make_test()
    control, challenger = ab_test.variants
    storage.update_variant_status(challenger.id, VariantStatus.DISABLED, "Manually disabled")
    record(ab_test, control, 1000, 30)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.skipped_reason == OptimizationEngine.INSUFFICIENT_ACTIVE_VARIANTS


def test_zero_average_rate_is_skipped(storage, make_test, record):
    """Test that no conversions at all is treated as noise."""
    ab_test = make_test()
    control, challenger = ab_test.variants
    record(ab_test, control, 1000, 0)
    record(ab_test, challenger, 1000, 0)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.skipped_reason == OptimizationEngine.ZERO_AVERAGE_RATE


def test_zero_control_rate_is_skipped(storage, make_test, record):
    """Test that uplift is not computed against a zero baseline."""
    ab_test = make_test()
    control, challenger = ab_test.variants
    record(ab_test, control, 1000, 0)
    record(ab_test, challenger, 1000, 50)

    result = OptimizationEngine(storage).evaluate(ab_test.id)

    assert result.skipped_reason == OptimizationEngine.ZERO_CONTROL_RATE
    assert actions(storage, ab_test.id) == []


def test_manual_trigger_records_evaluation(storage, make_test, record):
    """Test that record_evaluation appends an evaluation entry even when skipping."""
    ab_test = make_test()
    control, challenger = ab_test.variants
    record(ab_test, control, 50, 1)
    record(ab_test, challenger, 50, 2)

    OptimizationEngine(storage).evaluate(ab_test.id, record_evaluation=True)

    log = storage.get_activity_log(ab_test.id)
    assert len(log) == 1
    assert log[0].action == ActivityAction.EVALUATION
    assert log[0].variant_id is None
    assert log[0].details["skippedReason"] == OptimizationEngine.INSUFFICIENT_SAMPLE_SIZE
    assert "insufficient sample size" in log[0].message


def test_manual_trigger_records_actions_taken(storage, make_test, record):
    """Test that the evaluation entry counts the actions of the pass."""
    ab_test = make_test()
    control, challenger = ab_test.variants
    record(ab_test, control, 1000, 30)
    record(ab_test, challenger, 1000, 48)

    OptimizationEngine(storage).evaluate(ab_test.id, record_evaluation=True)

    entry = storage.get_activity_log(ab_test.id)[0]
    assert entry.action == ActivityAction.EVALUATION
    assert entry.details == {"skippedReason": "", "disabledVariants": 0, "winnerPromoted": 1}


def test_failed_write_propagates_and_keeps_earlier_writes(storage, make_test, record, monkeypatch):
    """Test that a storage failure aborts the pass without undoing committed writes."""
    ab_test = make_test()
    control, challenger = ab_test.variants
    record(ab_test, control, 1000, 30)
    record(ab_test, challenger, 1000, 48)

    def fail(*args, **kwargs):
        raise SQLAlchemyError("database unavailable")

    monkeypatch.setattr(storage, "update_test_winner", fail)

    with pytest.raises(SQLAlchemyError):
        OptimizationEngine(storage).evaluate(ab_test.id)

    ab_test = storage.get_test(ab_test.id)
    assert ab_test.variants[1].variant_status == VariantStatus.WINNER
    assert ab_test.status == "running"
    assert actions(storage, ab_test.id) == []
