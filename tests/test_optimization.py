# tests/test_optimization.py
from datetime import date

import pytest

from sitecpm.critical_path import analyze_critical_path
from sitecpm.errors import ConstraintInfeasibleError, ScheduleValidationError
from sitecpm.models import (
    ActivityType,
    OptimizationConstraints,
    OptimizationGoal,
    ResourceRequirements,
    Schedule,
    Trade,
    WorkforceRequirement,
)
from sitecpm.optimization import ScheduleOptimizer, parse_goals


def masons():
    return ResourceRequirements(workforce=[WorkforceRequirement(trade=Trade.MASONRY, quantity=2)])


@pytest.fixture
def optimizer():
    return ScheduleOptimizer()


@pytest.fixture
def schedule(project_start):
    return Schedule(id="S1", name="Casa", start_date=project_start)


def planned(activities, start):
    analyze_critical_path(activities, start, keep_starts=True)
    return activities


def test_parse_goals():
    assert parse_goals(["minimize_cost"]) == [OptimizationGoal.MINIMIZE_COST]
    with pytest.raises(ScheduleValidationError):
        parse_goals([])
    with pytest.raises(ScheduleValidationError):
        parse_goals(["go_faster"])


def test_leveling_serializes_shared_trade(optimizer, schedule, make_activity, project_start):
    acts = planned([
        make_activity("A", 3, resources=masons()),
        make_activity("B", 2, resources=masons()),
    ], project_start)

    result = optimizer.optimize(schedule, acts, ["minimize_cost"])
    a, b = result.optimized_activities
    assert b.planned_start_date == a.planned_end_date == date(2025, 1, 9)
    assert any(action.action == "level" for action in result.actions)
    # the caller's activities are untouched
    assert acts[1].planned_start_date == project_start


def test_leveling_respects_fixed(optimizer, schedule, make_activity, project_start):
    acts = planned([
        make_activity("A", 3, resources=masons()),
        make_activity("B", 2, resources=masons()),
    ], project_start)
    result = optimizer.optimize(
        schedule, acts, ["minimize_cost"], OptimizationConstraints(fixed_activities=["B"])
    )
    assert result.optimized_activities[1].planned_start_date == project_start


def test_crash_shortens_critical_chain(optimizer, schedule, make_activity, project_start):
    acts = planned([
        make_activity("A", 5, planned_total_cost=1000),
        make_activity("B", 5, preds=["A"], planned_total_cost=1000),
    ], project_start)

    result = optimizer.optimize(schedule, acts, ["minimize_duration"], OptimizationConstraints(max_duration=9))
    a, b = result.optimized_activities
    assert a.planned_duration == 4
    assert a.planned_total_cost == pytest.approx(1300)
    assert a.planned_labor_cost == pytest.approx(300)
    assert b.planned_start_date == date(2025, 1, 10)
    assert result.optimized_schedule.total_planned_duration == 8
    assert result.improvements.duration_reduction_days == 2
    assert result.improvements.duration_reduction_percentage == 20.0
    assert result.max_duration_met is True
    assert result.actions[0].action == "apply_duration_plan"
    assert result.actions[0].priority == "high"

    # originals are kept for comparison
    assert [x.planned_duration for x in result.original_activities] == [5, 5]
    assert acts[0].planned_duration == 5
    assert result.original_schedule.is_optimized is False
    assert result.optimized_schedule.is_optimized is True


def test_crash_respects_budget_ceiling(optimizer, schedule, make_activity, project_start):
    acts = planned([
        make_activity("A", 5, planned_total_cost=1000),
        make_activity("B", 5, preds=["A"], planned_total_cost=1000),
    ], project_start)
    result = optimizer.optimize(
        schedule, acts, ["minimize_duration"], OptimizationConstraints(max_budget=1200, max_duration=9)
    )
    assert [a.planned_duration for a in result.optimized_activities] == [5, 5]
    assert result.improvements.duration_reduction_days == 0
    assert result.max_duration_met is False


def test_crash_activity_raises_above_ceiling(optimizer, make_activity):
    act = make_activity("A", 5, planned_total_cost=1000)
    with pytest.raises(ConstraintInfeasibleError):
        optimizer.crash_activity(act, max_budget=1100)
    assert act.planned_duration == 5


def test_one_day_activity_cannot_be_crashed(optimizer, make_activity):
    act = make_activity("A", 1, planned_total_cost=1000)
    assert optimizer.crash_activity(act, None) == 0
    assert act.planned_total_cost == 1000


def test_fast_track_pulls_independent_work_forward(optimizer, schedule, make_activity, project_start):
    a = make_activity("A", 5)
    c = make_activity("C", 5, preds=["A"])
    b = make_activity("B", 2)
    b.planned_start_date = date(2025, 1, 12)
    acts = planned([a, c, b], project_start)
    assert not b.is_critical_path

    result = optimizer.optimize(schedule, acts, ["minimize_duration"])
    moved = {x.id: x for x in result.optimized_activities}["B"]
    assert moved.planned_start_date == project_start
    assert any(action.action == "fast_track" for action in result.actions)


def test_conflicts_are_detected(optimizer, make_activity, project_start):
    acts = planned([
        make_activity("A", 3, resources=masons()),
        make_activity("B", 2, resources=masons()),
        make_activity("C", 2),
    ], project_start)
    conflicts = optimizer.detect_conflicts(acts)
    assert len(conflicts) == 1
    assert conflicts[0].trade == "masonry"
    assert conflicts[0].activity_ids == ["A", "B"]
    assert conflicts[0].overlap_days == 2


def test_resolve_moves_non_critical_side(optimizer, schedule, make_activity, project_start):
    acts = planned([
        make_activity("A", 5, resources=masons()),
        make_activity("C", 5, preds=["A"]),
        make_activity("B", 2, resources=masons()),
    ], project_start)
    result = optimizer.optimize(schedule, acts, ["maximize_resource_utilization"])
    assert len(result.conflicts) == 1
    assert result.conflicts[0].resolved
    b = {x.id: x for x in result.optimized_activities}["B"]
    assert b.planned_start_date == date(2025, 1, 11)


def test_risk_adds_buffers_for_outdoor_critical_work(optimizer, schedule, make_activity, project_start):
    acts = planned([
        make_activity("A", 10, activity_type=ActivityType.EXCAVATION),
        make_activity("B", 2, preds=["A"]),
    ], project_start)
    result = optimizer.optimize(schedule, acts, ["minimize_risk"])
    buffers = [a for a in result.actions if a.action == "add_buffer"]
    assert len(buffers) == 1
    assert buffers[0].activity_ids == ["A"]
    assert buffers[0].impact_days == 1
