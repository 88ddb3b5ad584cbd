# sitecpm/optimization.py
import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Set

from sitecpm.critical_path import CriticalPathResult, analyze_critical_path
from sitecpm.errors import ConstraintInfeasibleError, ScheduleValidationError
from sitecpm.models import (
    Activity,
    OptimizationConstraints,
    OptimizationGoal,
    Schedule,
)
from sitecpm.scheduler import forward_pass, predecessor_map, topological_sort
from sitecpm.utils import add_days, days_between, from_day_offset
from sitecpm.weather import is_outdoor

logger = logging.getLogger(__name__)

PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}


@dataclass
class ResourceConflict:
    trade: str
    activity_ids: List[str]
    overlap_days: int
    resolved: bool = False
    note: str = ""


@dataclass
class RecommendedAction:
    action: str
    description: str
    priority: str
    activity_ids: List[str] = field(default_factory=list)
    impact_days: float = 0.0
    impact_cost: float = 0.0


@dataclass
class Improvements:
    duration_reduction_days: int = 0
    duration_reduction_percentage: float = 0.0
    cost_reduction: float = 0.0
    resource_efficiency_gain: float = 0.0


@dataclass
class OptimizationResult:
    original_schedule: Schedule
    original_activities: List[Activity]
    optimized_schedule: Schedule
    optimized_activities: List[Activity]
    improvements: Improvements
    actions: List[RecommendedAction] = field(default_factory=list)
    conflicts: List[ResourceConflict] = field(default_factory=list)
    max_duration_met: Optional[bool] = None


def resource_efficiency(activities: List[Activity]) -> float:
    """Fraction of activities carrying at least one workforce requirement."""
    if not activities:
        return 0.0
    return sum(1 for a in activities if a.resources.workforce) / len(activities)


def schedule_span(activities: Iterable[Activity], start: date) -> int:
    ends = [a.planned_end_date for a in activities if a.planned_end_date is not None]
    return days_between(start, max(ends)) if ends else 0


def total_cost(activities: Iterable[Activity]) -> float:
    return sum(a.planned_total_cost for a in activities)


def parse_goals(goals) -> List[OptimizationGoal]:
    if not goals:
        raise ScheduleValidationError("At least one optimization goal is required")
    parsed = []
    for goal in goals:
        try:
            parsed.append(OptimizationGoal(goal))
        except ValueError:
            raise ScheduleValidationError(f"Unknown optimization goal: {goal}") from None
    return parsed


class ScheduleOptimizer:
    """
    Heuristic optimizer. Every goal works on a deep copy of the schedule; the
    caller's objects are never touched.
    """

    def __init__(self, crash_duration_factor: float = 0.8, crash_cost_factor: float = 1.3):
        self.crash_duration_factor = crash_duration_factor
        self.crash_cost_factor = crash_cost_factor

    # -- relationships --

    def _ancestors(self, activities: List[Activity]) -> Dict[str, Set[str]]:
        preds = predecessor_map(activities)
        ancestors: Dict[str, Set[str]] = {}
        for act in topological_sort(activities, preds=preds):
            found: Set[str] = set()
            for dep in preds[act.id]:
                found.add(dep.activity_id)
                found |= ancestors[dep.activity_id]
            ancestors[act.id] = found
        return ancestors

    @staticmethod
    def _related(a: str, b: str, ancestors: Dict[str, Set[str]]) -> bool:
        return a in ancestors[b] or b in ancestors[a]

    @staticmethod
    def _shares_trade(a: Activity, b: Activity) -> bool:
        return bool(set(a.workforce_trades) & set(b.workforce_trades))

    def _dependency_earliest(self, activities: List[Activity], start: date, pinned: Dict[str, date]) -> Dict[str, date]:
        """Earliest start of every activity allowed by its links alone."""
        preds = predecessor_map(activities)
        order = topological_sort(activities, preds=preds)
        pins = {aid: days_between(start, day) for aid, day in pinned.items()}
        times = forward_pass(order, preds, pins=pins)
        return {aid: from_day_offset(s, start) for aid, (s, _) in times.items()}

    @staticmethod
    def _move(act: Activity, new_start: date) -> None:
        act.planned_start_date = new_start
        act.planned_end_date = add_days(new_start, act.planned_duration)

    # -- goals --

    def fast_track(self, activities: List[Activity], start: date, fixed: Set[str], pinned: Dict[str, date]) -> List[RecommendedAction]:
        """
        Pulls unrelated non-critical work forward so it runs alongside a
        critical activity. A candidate never moves before its own links allow.
        """
        actions = []
        ancestors = self._ancestors(activities)
        earliest = self._dependency_earliest(activities, start, pinned)
        critical = [a for a in activities if a.is_critical_path]
        for crit in critical:
            moved = []
            for cand in activities:
                if cand.is_critical_path or cand.id in fixed or cand.is_finished:
                    continue
                if self._related(crit.id, cand.id, ancestors) or self._shares_trade(crit, cand):
                    continue
                if cand.planned_start_date <= crit.planned_start_date:
                    continue
                if earliest[cand.id] > crit.planned_start_date:
                    continue
                gained = days_between(crit.planned_start_date, cand.planned_start_date)
                self._move(cand, crit.planned_start_date)
                moved.append((cand.id, gained))
            if moved:
                actions.append(RecommendedAction(
                    action="fast_track",
                    description=f"Run {len(moved)} activit{'y' if len(moved) == 1 else 'ies'} in parallel with '{crit.name}'",
                    priority="medium",
                    activity_ids=[crit.id] + [m[0] for m in moved],
                    impact_days=max(m[1] for m in moved),
                ))
        return actions

    def crash_activity(self, act: Activity, max_budget: Optional[float]) -> int:
        """Shortens one activity in place and returns the days saved."""
        if act.planned_duration <= 1:
            return 0
        new_cost = act.planned_total_cost * self.crash_cost_factor
        if max_budget is not None and new_cost > max_budget:
            raise ConstraintInfeasibleError(
                f"Crashing '{act.name}' would cost {new_cost:.2f}, above the budget ceiling {max_budget:.2f}",
                schedule_id=act.schedule_id,
                activity_id=act.id,
            )
        new_duration = max(1, math.floor(act.planned_duration * self.crash_duration_factor))
        saved = act.planned_duration - new_duration
        extra = new_cost - act.planned_total_cost
        act.planned_duration = new_duration
        act.planned_total_cost = new_cost
        act.planned_labor_cost += extra
        return saved

    def crash(self, activities: List[Activity], fixed: Set[str], max_budget: Optional[float]) -> List[RecommendedAction]:
        actions = []
        for act in activities:
            if not act.is_critical_path or act.id in fixed or act.is_finished:
                continue
            cost_before = act.planned_total_cost
            try:
                saved = self.crash_activity(act, max_budget)
            except ConstraintInfeasibleError as exc:
                logger.info("skipping crash: %s", exc.message)
                continue
            if saved:
                actions.append(RecommendedAction(
                    action="crash",
                    description=f"Add resources to '{act.name}' to shorten it by {saved} day(s)",
                    priority="medium",
                    activity_ids=[act.id],
                    impact_days=saved,
                    impact_cost=act.planned_total_cost - cost_before,
                ))
        return actions

    def _trade_groups(self, activities: List[Activity]) -> Dict[str, List[Activity]]:
        groups: Dict[str, List[Activity]] = {}
        for act in activities:
            if act.is_finished or act.planned_start_date is None:
                continue
            for trade in dict.fromkeys(act.workforce_trades):
                groups.setdefault(trade.value, []).append(act)
        return groups

    def level_resources(self, activities: List[Activity], fixed: Set[str]) -> List[RecommendedAction]:
        """Serializes work that shares a workforce trade."""
        actions = []
        position = {a.id: i for i, a in enumerate(activities)}
        for trade, group in self._trade_groups(activities).items():
            group.sort(key=lambda a: (a.planned_start_date, position[a.id]))
            busy_until = None
            for act in group:
                if busy_until is not None and act.planned_start_date < busy_until and act.id not in fixed:
                    shift = days_between(act.planned_start_date, busy_until)
                    self._move(act, busy_until)
                    actions.append(RecommendedAction(
                        action="level",
                        description=f"Start '{act.name}' after the previous {trade} work ends",
                        priority="low",
                        activity_ids=[act.id],
                        impact_days=shift,
                    ))
                if busy_until is None or act.planned_end_date > busy_until:
                    busy_until = act.planned_end_date
        return actions

    def detect_conflicts(self, activities: List[Activity]) -> List[ResourceConflict]:
        conflicts = []
        for trade, group in self._trade_groups(activities).items():
            for i, a in enumerate(group):
                for b in group[i + 1:]:
                    overlap = min(a.planned_end_date, b.planned_end_date) - max(a.planned_start_date, b.planned_start_date)
                    if overlap.days > 0:
                        conflicts.append(ResourceConflict(trade=trade, activity_ids=[a.id, b.id], overlap_days=overlap.days))
        return conflicts

    def resolve_conflicts(self, activities: List[Activity], fixed: Set[str]) -> List[ResourceConflict]:
        """
        Moves the non-critical side of a mixed critical/non-critical conflict to
        the critical activity's end. Other conflicts are reported unresolved.
        """
        by_id = {a.id: a for a in activities}
        conflicts = self.detect_conflicts(activities)
        for conflict in conflicts:
            a, b = (by_id[i] for i in conflict.activity_ids)
            if a.is_critical_path == b.is_critical_path:
                conflict.note = "both critical" if a.is_critical_path else "both non-critical"
                continue
            crit, other = (a, b) if a.is_critical_path else (b, a)
            if other.id in fixed:
                conflict.note = "non-critical activity is fixed"
                continue
            if other.planned_start_date >= crit.planned_end_date:
                conflict.resolved = True
                continue
            self._move(other, crit.planned_end_date)
            conflict.resolved = True
            conflict.note = f"moved {other.id} after {crit.id}"
        return conflicts

    def risk_actions(self, activities: List[Activity]) -> List[RecommendedAction]:
        actions = []
        for act in activities:
            if not act.is_critical_path or act.is_finished:
                continue
            if act.environment.weather_sensitive or is_outdoor(act):
                buffer_days = max(1, math.ceil(act.planned_duration * 0.1))
                actions.append(RecommendedAction(
                    action="add_buffer",
                    description=f"Add {buffer_days} day(s) of weather buffer after '{act.name}'",
                    priority="medium" if act.environment.height_work else "low",
                    activity_ids=[act.id],
                    impact_days=buffer_days,
                ))
        return actions

    # -- driver --

    def optimize(
        self,
        schedule: Schedule,
        activities: List[Activity],
        goals,
        constraints: Optional[OptimizationConstraints] = None,
    ) -> OptimizationResult:
        goals = parse_goals(goals)
        constraints = constraints or OptimizationConstraints()
        fixed = set(constraints.fixed_activities)

        original_schedule = schedule.model_copy(deep=True)
        original = [a.model_copy(deep=True) for a in activities]
        work = [a.model_copy(deep=True) for a in activities]
        start = schedule.start_date
        pinned = {a.id: a.planned_start_date for a in work if a.id in fixed and a.planned_start_date}

        analyze_critical_path(work, start, schedule.id, pinned=pinned, keep_starts=True)
        original_duration = schedule_span(work, start)
        original_cost = total_cost(work)
        actions: List[RecommendedAction] = []
        conflicts: List[ResourceConflict] = []

        if OptimizationGoal.MINIMIZE_DURATION in goals:
            actions += self.fast_track(work, start, fixed, pinned)
            actions += self.crash(work, fixed, constraints.max_budget)
            # the critical chain compresses; non-critical work keeps its place
            floors = {a.id: a.planned_start_date for a in work if not a.is_critical_path}
            analyze_critical_path(work, start, schedule.id, pinned=pinned, floors=floors)

        if OptimizationGoal.MINIMIZE_COST in goals:
            actions += self.level_resources(work, fixed)
            analyze_critical_path(work, start, schedule.id, pinned=pinned, keep_starts=True)

        if OptimizationGoal.MAXIMIZE_RESOURCE_UTILIZATION in goals:
            conflicts = self.resolve_conflicts(work, fixed)
            analyze_critical_path(work, start, schedule.id, pinned=pinned, keep_starts=True)

        if OptimizationGoal.MINIMIZE_RISK in goals:
            actions += self.risk_actions(work)

        cpm = analyze_critical_path(work, start, schedule.id, pinned=pinned, keep_starts=True)
        optimized_schedule = self._summarize(schedule, work, cpm, goals, constraints)

        improvements = self._improvements(original, work, original_duration, original_cost, start)
        actions = self._rank(actions, improvements, original_duration, original_cost)
        max_met = None
        if constraints.max_duration is not None:
            max_met = optimized_schedule.total_planned_duration <= constraints.max_duration

        logger.info(
            "optimized schedule %s: %d -> %d days, %d action(s)",
            schedule.id, original_duration, optimized_schedule.total_planned_duration, len(actions),
        )
        return OptimizationResult(
            original_schedule=original_schedule,
            original_activities=original,
            optimized_schedule=optimized_schedule,
            optimized_activities=work,
            improvements=improvements,
            actions=actions,
            conflicts=conflicts,
            max_duration_met=max_met,
        )

    def _summarize(self, schedule, work, cpm: CriticalPathResult, goals, constraints) -> Schedule:
        optimized = schedule.model_copy(deep=True)
        optimized.planned_end_date = cpm.project_finish
        optimized.total_planned_duration = schedule_span(work, schedule.start_date)
        optimized.total_planned_cost = round(total_cost(work), 2)
        optimized.critical_path = list(cpm.critical_path)
        optimized.is_optimized = True
        optimized.optimization_goals = list(goals)
        optimized.optimization_constraints = constraints
        return optimized

    def _improvements(self, original, work, original_duration, original_cost, start) -> Improvements:
        new_duration = schedule_span(work, start)
        reduction = max(0, original_duration - new_duration)
        return Improvements(
            duration_reduction_days=reduction,
            duration_reduction_percentage=round(reduction / original_duration * 100, 2) if original_duration else 0.0,
            cost_reduction=round(max(0.0, original_cost - total_cost(work)), 2),
            resource_efficiency_gain=round(max(0.0, resource_efficiency(work) - resource_efficiency(original)), 4),
        )

    def _rank(self, actions, improvements: Improvements, original_duration, original_cost) -> List[RecommendedAction]:
        summary = []
        if improvements.duration_reduction_days > 0:
            pct = improvements.duration_reduction_percentage
            summary.append(RecommendedAction(
                action="apply_duration_plan",
                description=f"Apply the optimized plan to finish {improvements.duration_reduction_days} day(s) earlier",
                priority="high" if pct >= 10 else "medium" if pct >= 3 else "low",
                impact_days=improvements.duration_reduction_days,
            ))
        if improvements.cost_reduction > 0:
            share = improvements.cost_reduction / original_cost if original_cost else 0
            summary.append(RecommendedAction(
                action="apply_cost_plan",
                description=f"Reallocate resources to save {improvements.cost_reduction:.2f}",
                priority="high" if share >= 0.05 else "medium",
                impact_cost=-improvements.cost_reduction,
            ))
        if improvements.resource_efficiency_gain > 0.05:
            summary.append(RecommendedAction(
                action="improve_resource_assignment",
                description=f"Resource efficiency improves by {improvements.resource_efficiency_gain:.0%}",
                priority="medium",
            ))
        # individual steps are promoted when they carry a large share of the gain
        for act in actions:
            if original_duration and act.action in ("crash", "fast_track") and act.impact_days / original_duration >= 0.1:
                act.priority = "high"
        ranked = summary + actions
        ranked.sort(key=lambda a: (PRIORITY_RANK[a.priority], -abs(a.impact_days), -abs(a.impact_cost)))
        return ranked
