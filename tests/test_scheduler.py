# tests/test_scheduler.py
from datetime import date

import pytest

from sitecpm.critical_path import analyze_critical_path
from sitecpm.errors import CycleDetectedError
from sitecpm.models import Dependency, RelationType
from sitecpm.scheduler import (
    link_successors,
    predecessor_map,
    project_finish,
    schedule_activities,
    topological_sort,
)


def test_finish_to_start_chain(make_activity, project_start):
    a = make_activity("A", 3)
    b = make_activity("B", 2, preds=["A"])
    schedule_activities([a, b], project_start)
    assert a.planned_start_date == date(2025, 1, 6)
    assert a.planned_end_date == date(2025, 1, 9)
    assert b.planned_start_date == date(2025, 1, 9)
    assert b.planned_end_date == date(2025, 1, 11)


def test_lag_is_added_to_finish_to_start(make_activity, project_start):
    a = make_activity("A", 3)
    b = make_activity("B", 2, preds=["A"], lag=2)
    schedule_activities([a, b], project_start)
    assert b.planned_start_date == date(2025, 1, 11)


def test_start_to_start_with_lag(make_activity, project_start):
    a = make_activity("A", 5)
    b = make_activity("B", 3, preds=["A"], relation=RelationType.SS, lag=2)
    schedule_activities([a, b], project_start)
    assert b.planned_start_date == date(2025, 1, 8)
    assert b.planned_end_date == date(2025, 1, 11)


def test_finish_to_finish_with_lag(make_activity, project_start):
    a = make_activity("A", 5)
    b = make_activity("B", 2, preds=["A"], relation=RelationType.FF, lag=1)
    schedule_activities([a, b], project_start)
    # B must finish one day after A finishes
    assert b.planned_end_date == date(2025, 1, 12)
    assert b.planned_start_date == date(2025, 1, 10)


def test_start_to_finish_never_starts_before_project(make_activity, project_start):
    a = make_activity("A", 5)
    b = make_activity("B", 3, preds=["A"], relation=RelationType.SF)
    schedule_activities([a, b], project_start)
    assert b.planned_start_date == project_start


def test_every_activity_starts_on_or_after_project_start(make_activity, project_start):
    acts = [
        make_activity("A", 4),
        make_activity("B", 2, preds=["A"], relation=RelationType.FF, lag=-10),
        make_activity("C", 1, preds=["A"], relation=RelationType.SS, lag=-3),
    ]
    schedule_activities(acts, project_start)
    assert all(a.planned_start_date >= project_start for a in acts)
    assert all(a.planned_end_date >= a.planned_start_date for a in acts)


def test_successor_declared_on_predecessor(make_activity, project_start):
    a = make_activity("A", 4)
    a.successors = [Dependency(activity_id="B")]
    b = make_activity("B", 1)
    schedule_activities([a, b], project_start)
    assert b.planned_start_date == date(2025, 1, 10)


def test_dangling_predecessor_is_ignored(make_activity, project_start):
    a = make_activity("A", 2, preds=["ghost"])
    schedule_activities([a], project_start)
    assert a.planned_start_date == project_start
    assert predecessor_map([a]) == {"A": []}


def test_cycle_is_reported(make_activity):
    acts = [
        make_activity("A", 1, preds=["C"]),
        make_activity("B", 1, preds=["A"]),
        make_activity("C", 1, preds=["B"]),
    ]
    with pytest.raises(CycleDetectedError) as exc_info:
        topological_sort(acts, schedule_id="S1")
    cycle = exc_info.value.cycle
    assert set(cycle) == {"A", "B", "C"}
    assert cycle[0] == cycle[-1]
    assert len(cycle) == 4
    assert exc_info.value.schedule_id == "S1"
    assert "Circular dependency" in str(exc_info.value)


def test_self_dependency_is_a_cycle(make_activity):
    a = make_activity("A", 1, preds=["A"])
    with pytest.raises(CycleDetectedError):
        topological_sort([a])


def test_cycle_leaves_dates_untouched(make_activity, project_start):
    acts = [make_activity("A", 1, preds=["B"]), make_activity("B", 1, preds=["A"])]
    with pytest.raises(CycleDetectedError):
        schedule_activities(acts, project_start)
    assert all(a.planned_start_date is None for a in acts)


def test_rescheduling_unchanged_activities_keeps_dates(make_activity, project_start):
    acts = [
        make_activity("A", 4),
        make_activity("B", 3, preds=["A"], relation=RelationType.SS, lag=1),
        make_activity("C", 2, preds=["A"], relation=RelationType.FF, lag=2),
        make_activity("D", 2, preds=["B", "C"]),
    ]

    def dates():
        return {a.id: (a.planned_start_date, a.planned_end_date) for a in acts}

    schedule_activities(acts, project_start)
    first = dates()
    assert first["C"] == (date(2025, 1, 10), date(2025, 1, 12))
    assert first["D"] == (date(2025, 1, 12), date(2025, 1, 14))

    analyze_critical_path(acts, project_start, keep_starts=True)
    assert dates() == first
    schedule_activities(acts, project_start)
    assert dates() == first


def test_order_is_deterministic(make_activity):
    acts = [
        make_activity("D", 1, preds=["B", "C"]),
        make_activity("C", 1),
        make_activity("B", 1),
        make_activity("A", 1),
    ]
    first = [a.id for a in topological_sort(acts)]
    second = [a.id for a in topological_sort(acts)]
    assert first == second == ["B", "C", "D", "A"]


def test_predecessors_come_first(make_activity):
    acts = [
        make_activity("E", 1, preds=["D"]),
        make_activity("D", 1, preds=["B", "C"]),
        make_activity("C", 1, preds=["A"]),
        make_activity("B", 1, preds=["A"]),
        make_activity("A", 1),
    ]
    order = [a.id for a in topological_sort(acts)]
    position = {aid: i for i, aid in enumerate(order)}
    for act in acts:
        for dep in act.predecessors:
            assert position[dep.activity_id] < position[act.id]


def test_link_successors_mirrors_predecessors(make_activity):
    a = make_activity("A", 1)
    b = make_activity("B", 1, preds=["A"], relation=RelationType.SS, lag=1)
    link_successors([a, b])
    assert [(d.activity_id, d.relation_type, d.lag_days) for d in a.successors] == [("B", RelationType.SS, 1)]
    assert b.successors == []


def test_project_finish(make_activity, project_start):
    acts = [make_activity("A", 3), make_activity("B", 7)]
    assert project_finish(acts) is None
    schedule_activities(acts, project_start)
    assert project_finish(acts) == date(2025, 1, 13)
