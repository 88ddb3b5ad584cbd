# sitecpm/scheduler.py
"""
Temporal scheduler: orders activities so that predecessors come first and
assigns planned dates with a forward pass over FS/SS/FF/SF relations.

Dates are handled as integer day offsets from the project start and converted
back to calendar dates at the end.
"""
import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from sitecpm.errors import CycleDetectedError
from sitecpm.models import Activity, Dependency, RelationType
from sitecpm.utils import from_day_offset, to_day_offset

logger = logging.getLogger(__name__)

WHITE, GRAY, BLACK = 0, 1, 2


def predecessor_map(activities: Iterable[Activity]) -> Dict[str, List[Dependency]]:
    """
    Collects the incoming links of every activity. A link can be declared on the
    successor (predecessors list) or on the predecessor (successors list); the
    successor's own declaration wins. Ids outside the set are dropped.
    """
    activities = list(activities)
    known = {a.id for a in activities}
    preds: Dict[str, List[Dependency]] = {a.id: [] for a in activities}

    for act in activities:
        for dep in act.predecessors:
            if dep.activity_id in known:
                preds[act.id].append(dep)

    for act in activities:
        for dep in act.successors:
            succ_id = dep.activity_id
            if succ_id not in known:
                continue
            if any(p.activity_id == act.id for p in preds[succ_id]):
                continue
            preds[succ_id].append(
                Dependency(activity_id=act.id, relation_type=dep.relation_type, lag_days=dep.lag_days)
            )
    return preds


def successor_map(preds: Dict[str, List[Dependency]]) -> Dict[str, List[Dependency]]:
    succs: Dict[str, List[Dependency]] = {aid: [] for aid in preds}
    for aid, deps in preds.items():
        for dep in deps:
            succs[dep.activity_id].append(
                Dependency(activity_id=aid, relation_type=dep.relation_type, lag_days=dep.lag_days)
            )
    return succs


def link_successors(activities: List[Activity]) -> None:
    """Rebuilds every successors list from the predecessor links."""
    succs = successor_map(predecessor_map(activities))
    for act in activities:
        act.successors = succs[act.id]


def topological_sort(
    activities: List[Activity],
    schedule_id: Optional[str] = None,
    preds: Optional[Dict[str, List[Dependency]]] = None,
) -> List[Activity]:
    """
    Depth-first sort visiting predecessors first. Roots keep their insertion
    order. Raises CycleDetectedError naming the activities in the loop.
    """
    by_id = {a.id: a for a in activities}
    preds = preds if preds is not None else predecessor_map(activities)
    color = {aid: WHITE for aid in by_id}
    order: List[Activity] = []

    for root in activities:
        if color[root.id] != WHITE:
            continue
        color[root.id] = GRAY
        path = [root.id]
        stack = [(root.id, iter(preds[root.id]))]
        while stack:
            node, deps = stack[-1]
            pushed = False
            for dep in deps:
                pid = dep.activity_id
                if color[pid] == GRAY:
                    loop = path[path.index(pid):]
                    # path runs successor -> predecessor; report it in flow order
                    cycle = list(reversed(loop)) + [loop[-1]]
                    logger.warning("cycle detected in schedule %s: %s", schedule_id, cycle)
                    raise CycleDetectedError(cycle, schedule_id=schedule_id)
                if color[pid] == WHITE:
                    color[pid] = GRAY
                    path.append(pid)
                    stack.append((pid, iter(preds[pid])))
                    pushed = True
                    break
            if not pushed:
                stack.pop()
                path.pop()
                color[node] = BLACK
                order.append(by_id[node])
    return order


def start_constraint(dep: Dependency, pred_start: int, pred_finish: int, duration: int) -> int:
    """Earliest start offset that a single predecessor link allows."""
    if dep.relation_type == RelationType.SS:
        return pred_start + dep.lag_days
    if dep.relation_type == RelationType.FF:
        return pred_finish + dep.lag_days - duration
    if dep.relation_type == RelationType.SF:
        return pred_start + dep.lag_days - duration
    return pred_finish + dep.lag_days


def forward_pass(
    order: List[Activity],
    preds: Dict[str, List[Dependency]],
    pins: Optional[Dict[str, int]] = None,
    min_starts: Optional[Dict[str, int]] = None,
) -> Dict[str, Tuple[int, int]]:
    """
    Returns {activity_id: (start_offset, finish_offset)}. Offsets never go below
    zero. Pinned activities keep their offset; min_starts only push later.
    """
    pins = pins or {}
    min_starts = min_starts or {}
    times: Dict[str, Tuple[int, int]] = {}
    for act in order:
        duration = act.planned_duration
        if act.id in pins:
            start = max(0, pins[act.id])
        else:
            start = max(0, min_starts.get(act.id, 0))
            for dep in preds.get(act.id, []):
                if dep.activity_id not in times:
                    continue
                p_start, p_finish = times[dep.activity_id]
                start = max(start, start_constraint(dep, p_start, p_finish, duration))
        times[act.id] = (start, start + duration)
    return times


def schedule_activities(
    activities: List[Activity],
    project_start: date,
    schedule_id: Optional[str] = None,
    pinned: Optional[Dict[str, date]] = None,
    keep_starts: bool = False,
    floors: Optional[Dict[str, date]] = None,
) -> List[Activity]:
    """
    Assigns planned start/end dates in place and returns the activities in
    topological order. With keep_starts the current planned starts act as
    lower bounds, so activities only ever move later.
    """
    preds = predecessor_map(activities)
    order = topological_sort(activities, schedule_id=schedule_id, preds=preds)

    pins = {aid: to_day_offset(day, project_start) for aid, day in (pinned or {}).items()}
    min_starts = start_floors(activities, project_start, keep_starts, floors)
    times = forward_pass(order, preds, pins=pins, min_starts=min_starts)

    for act in order:
        start, finish = times[act.id]
        act.planned_start_date = from_day_offset(start, project_start)
        act.planned_end_date = from_day_offset(finish, project_start)
    logger.debug("scheduled %d activities for schedule %s", len(order), schedule_id)
    return order


def project_finish(activities: Iterable[Activity]) -> Optional[date]:
    ends = [a.planned_end_date for a in activities if a.planned_end_date is not None]
    return max(ends) if ends else None


def start_floors(
    activities: Iterable[Activity],
    project_start: date,
    keep_starts: bool = False,
    floors: Optional[Dict[str, date]] = None,
) -> Dict[str, int]:
    """Lower bounds for the forward pass, as day offsets."""
    result: Dict[str, int] = {}
    if keep_starts:
        for a in activities:
            if a.planned_start_date is not None:
                result[a.id] = to_day_offset(a.planned_start_date, project_start)
    for aid, day in (floors or {}).items():
        result[aid] = max(result.get(aid, 0), to_day_offset(day, project_start))
    return result
