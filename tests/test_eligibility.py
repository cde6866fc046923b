from burnkeeper.core.models import Milestone, MilestoneStatus
from burnkeeper.execution.eligibility import EligibilityEvaluator


def _m(threshold, status=MilestoneStatus.PENDING):
    return Milestone(
        id=f"m{threshold}",
        valuation_threshold=threshold,
        burn_amount=1.0,
        percent_of_supply=0.0,
        status=status,
    )


def test_eligible_milestones_in_ascending_order():
    milestones = [_m(300_000), _m(150_000), _m(100_000)]
    eligible = EligibilityEvaluator().eligible_milestones(200_000, milestones)
    assert [m.valuation_threshold for m in eligible] == [100_000, 150_000]


def test_completed_milestones_excluded():
    milestones = [_m(100_000, MilestoneStatus.COMPLETED), _m(150_000, MilestoneStatus.FAILED)]
    eligible = EligibilityEvaluator().eligible_milestones(200_000, milestones)
    assert [m.valuation_threshold for m in eligible] == [150_000]


def test_threshold_is_inclusive():
    assert len(EligibilityEvaluator().eligible_milestones(100_000, [_m(100_000)])) == 1


def test_reward_cycle_threshold():
    evaluator = EligibilityEvaluator(reward_threshold=0.5)
    assert evaluator.reward_cycle_eligible(0.5)
    assert not evaluator.reward_cycle_eligible(0.49)


def test_milestone_progress_rows():
    rows = EligibilityEvaluator().milestone_progress(150_000, [_m(300_000), _m(100_000)])
    assert [r["valuation_threshold"] for r in rows] == [100_000, 300_000]
    assert rows[0]["eligible"] and rows[0]["progress_pct"] == 100.0
    assert not rows[1]["eligible"] and rows[1]["progress_pct"] == 50.0
