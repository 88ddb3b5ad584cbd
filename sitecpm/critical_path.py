# sitecpm/critical_path.py
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Tuple

from sitecpm.models import Activity, Dependency, RelationType
from sitecpm.scheduler import (
    forward_pass,
    predecessor_map,
    start_floors,
    successor_map,
    topological_sort,
)
from sitecpm.utils import add_days, from_day_offset, to_day_offset

logger = logging.getLogger(__name__)


@dataclass
class CriticalPathResult:
    critical_path: List[str] = field(default_factory=list)
    project_start: Optional[date] = None
    project_finish: Optional[date] = None
    duration: int = 0
    total_float: Dict[str, int] = field(default_factory=dict)
    free_float: Dict[str, int] = field(default_factory=dict)


def _latest_finish(dep: Dependency, duration: int, succ_ls: int, succ_lf: int) -> int:
    """Latest finish a single successor link allows for its predecessor."""
    if dep.relation_type == RelationType.SS:
        return succ_ls - dep.lag_days + duration
    if dep.relation_type == RelationType.FF:
        return succ_lf - dep.lag_days
    if dep.relation_type == RelationType.SF:
        return succ_lf - dep.lag_days + duration
    return succ_ls - dep.lag_days


def _free_slack(dep: Dependency, es: int, ef: int, succ_es: int, succ_ef: int) -> int:
    if dep.relation_type == RelationType.SS:
        return succ_es - dep.lag_days - es
    if dep.relation_type == RelationType.FF:
        return succ_ef - dep.lag_days - ef
    if dep.relation_type == RelationType.SF:
        return succ_ef - dep.lag_days - es
    return succ_es - dep.lag_days - ef


def backward_pass(
    order: List[Activity],
    succs: Dict[str, List[Dependency]],
    finish: int,
) -> Dict[str, Tuple[int, int]]:
    """Returns {activity_id: (late_start, late_finish)} walking the order in reverse."""
    late: Dict[str, Tuple[int, int]] = {}
    for act in reversed(order):
        duration = act.planned_duration
        lf = finish
        for dep in succs.get(act.id, []):
            if dep.activity_id not in late:
                continue
            s_ls, s_lf = late[dep.activity_id]
            lf = min(lf, _latest_finish(dep, duration, s_ls, s_lf))
        late[act.id] = (lf - duration, lf)
    return late


def analyze_critical_path(
    activities: List[Activity],
    project_start: date,
    schedule_id: Optional[str] = None,
    pinned: Optional[Dict[str, date]] = None,
    keep_starts: bool = False,
    floors: Optional[Dict[str, date]] = None,
) -> CriticalPathResult:
    """
    Runs the forward and backward pass and annotates every activity in place
    with early/late dates, total and free float, the critical flag and the
    planned dates from the forward pass.

    An activity is critical when its total float is zero (or negative, which
    only happens when a pinned date over-constrains the network).
    """
    if not activities:
        return CriticalPathResult(project_start=project_start, project_finish=project_start)

    preds = predecessor_map(activities)
    succs = successor_map(preds)
    order = topological_sort(activities, schedule_id=schedule_id, preds=preds)

    pins = {aid: to_day_offset(day, project_start) for aid, day in (pinned or {}).items()}
    min_starts = start_floors(activities, project_start, keep_starts, floors)
    early = forward_pass(order, preds, pins=pins, min_starts=min_starts)
    finish = max(ef for _, ef in early.values())
    late = backward_pass(order, succs, finish)

    result = CriticalPathResult(
        project_start=project_start,
        project_finish=add_days(project_start, finish),
        duration=finish,
    )
    for act in order:
        es, ef = early[act.id]
        ls, lf = late[act.id]
        total = ls - es
        if succs[act.id]:
            free = min(
                _free_slack(dep, es, ef, *early[dep.activity_id])
                for dep in succs[act.id]
            )
        else:
            free = finish - ef
        free = max(0, min(free, max(total, 0)))

        act.early_start_date = from_day_offset(es, project_start)
        act.early_finish_date = from_day_offset(ef, project_start)
        act.late_start_date = from_day_offset(ls, project_start)
        act.late_finish_date = from_day_offset(lf, project_start)
        act.planned_start_date = act.early_start_date
        act.planned_end_date = act.early_finish_date
        act.total_float = total
        act.free_float = free
        act.is_critical_path = total <= 0

        result.total_float[act.id] = total
        result.free_float[act.id] = free
        if act.is_critical_path:
            result.critical_path.append(act.id)

    logger.info(
        "critical path for schedule %s: %d of %d activities, %d days",
        schedule_id, len(result.critical_path), len(order), finish,
    )
    return result
