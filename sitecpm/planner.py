# sitecpm/planner.py
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional, Tuple

from sitecpm import event_handlers  # noqa: F401  registers listeners
from sitecpm.critical_path import analyze_critical_path
from sitecpm.derivation import ScheduleDeriver
from sitecpm.errors import NotFoundError, ScheduleValidationError
from sitecpm.eventing import (
    PROGRESS_RECORDED,
    SCHEDULE_GENERATED,
    SCHEDULE_OPTIMIZED,
    Event,
    event_manager,
)
from sitecpm.models import (
    Activity,
    AlertSettings,
    ActivityStatus,
    BudgetLineItem,
    CalculationResult,
    ClimateFactors,
    CustomActivity,
    LaborFactors,
    OptimizationConstraints,
    ProgressReport,
    ResourceConstraints,
    Schedule,
    ScheduleStatus,
    ScheduleTemplate,
)
from sitecpm.notifications import NotificationService
from sitecpm.optimization import OptimizationResult, ResourceConflict, ScheduleOptimizer, total_cost
from sitecpm.performance import planned_fraction
from sitecpm.prediction import DelayPrediction, DelayPredictor
from sitecpm.repositories import (
    ActivityRepository,
    BudgetRepository,
    ProgressRepository,
    ScheduleRepository,
    TemplateRepository,
    WeatherFactorRepository,
)
from sitecpm.utils import days_between

logger = logging.getLogger(__name__)

WEATHER_LOOKBACK_DAYS = 7


@dataclass
class GenerationResult:
    schedule: Schedule
    activities: List[Activity]
    critical_path: List[str]
    recommendations: List[str] = field(default_factory=list)
    resource_conflicts: List[ResourceConflict] = field(default_factory=list)


@dataclass
class ProgressResult:
    activity: Activity
    expected_progress: float
    schedule_variance_days: int
    alerts: List[dict] = field(default_factory=list)


class SchedulePlanner:
    """Use-case entry points over a database engine."""

    def __init__(
        self,
        engine,
        deriver: Optional[ScheduleDeriver] = None,
        optimizer: Optional[ScheduleOptimizer] = None,
        predictor: Optional[DelayPredictor] = None,
        notifier: Optional[NotificationService] = None,
        events=event_manager,
    ):
        self.engine = engine
        self.deriver = deriver or ScheduleDeriver()
        self.optimizer = optimizer or ScheduleOptimizer()
        self.predictor = predictor or DelayPredictor()
        self.notifier = notifier or NotificationService(engine)
        self.events = events

        self.schedules = ScheduleRepository(engine)
        self.activities = ActivityRepository(engine)
        self.templates = TemplateRepository(engine)
        self.budgets = BudgetRepository(engine)
        self.progress = ProgressRepository(engine)
        self.weather_factors = WeatherFactorRepository(engine)

    # -- lookups --

    def get_schedule(self, schedule_id: str) -> Tuple[Schedule, List[Activity]]:
        schedule = self.schedules.find_by_id(schedule_id)
        if schedule is None:
            raise NotFoundError(f"Schedule {schedule_id} not found", schedule_id=schedule_id)
        return schedule, self.activities.find_by_schedule_id(schedule_id)

    def resolve_template(
        self,
        construction_type: str,
        geographic_zone: str,
        template_id: Optional[str] = None,
    ) -> ScheduleTemplate:
        if template_id:
            template = self.templates.find_by_id(template_id)
            if template is None:
                raise NotFoundError(f"Template {template_id} not found")
            return template
        candidates = self.templates.find_by_filter(construction_type, geographic_zone, scope="system", verified_only=True)
        if not candidates:
            raise ScheduleValidationError(
                f"No suitable template found for {construction_type} in {geographic_zone}"
            )
        return candidates[0]

    # -- generation --

    def generate_from_budget(
        self,
        budget_id: str,
        name: str,
        start_date: date,
        template_id: Optional[str] = None,
        custom_activities: Optional[List[CustomActivity]] = None,
        geographic_zone: Optional[str] = None,
        include_weather_buffer: bool = False,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> GenerationResult:
        budget = self.budgets.find_by_id(budget_id)
        if budget is None:
            raise NotFoundError(f"Budget {budget_id} not found")
        schedule = Schedule(
            name=name,
            budget_id=budget.id,
            construction_type=budget.construction_type,
            geographic_zone=geographic_zone or budget.geographic_zone,
            latitude=latitude,
            longitude=longitude,
            start_date=start_date,
        )
        return self._generate(schedule, budget.line_items, template_id, custom_activities, include_weather_buffer)

    def generate_from_calculation(
        self,
        calculation: CalculationResult,
        name: str,
        start_date: date,
        template_id: Optional[str] = None,
        custom_activities: Optional[List[CustomActivity]] = None,
        include_weather_buffer: bool = False,
    ) -> GenerationResult:
        schedule = Schedule(
            name=name,
            construction_type=calculation.construction_type,
            geographic_zone=calculation.geographic_zone,
            start_date=start_date,
        )
        return self._generate(
            schedule, calculation.to_line_items(), template_id, custom_activities, include_weather_buffer
        )

    def _configure(self, schedule: Schedule, template: ScheduleTemplate, include_weather_buffer: bool) -> None:
        buffer = 15 if include_weather_buffer else 0
        schedule.base_template_id = template.id
        schedule.status = ScheduleStatus.ACTIVE
        schedule.climate_factors = ClimateFactors(rainy_season_impact=buffer)
        schedule.labor_factors = LaborFactors(
            standard_work_hours=self.deriver.config.daily_hours,
            productivity_factors={t.value: p.productivity for t, p in template.workforce.items()},
        )
        schedule.resource_constraints = ResourceConstraints(buffer_time_percentage=buffer)
        schedule.alert_settings = AlertSettings(weather_impact_alerts=include_weather_buffer)

    def _recommendations(
        self,
        schedule: Schedule,
        template: ScheduleTemplate,
        activities: List[Activity],
        conflicts: List[ResourceConflict],
    ) -> List[str]:
        recs = []
        estimate = template.estimated_duration_days
        if estimate and schedule.total_planned_duration > estimate * 1.2:
            recs.append(
                f"Planned duration of {schedule.total_planned_duration} days exceeds the template estimate "
                f"of {estimate} days by more than 20%; consider running the duration optimizer"
            )
        if activities and len(schedule.critical_path) / len(activities) > 0.3:
            recs.append(
                f"{len(schedule.critical_path)} of {len(activities)} activities are critical; "
                "look for work that can run in parallel"
            )
        if conflicts:
            trades = sorted({c.trade for c in conflicts})
            recs.append(f"{len(conflicts)} resource conflict(s) detected for: {', '.join(trades)}")
        return recs

    def _generate(
        self,
        schedule: Schedule,
        line_items: List[BudgetLineItem],
        template_id: Optional[str],
        custom_activities: Optional[List[CustomActivity]],
        include_weather_buffer: bool,
    ) -> GenerationResult:
        template = self.resolve_template(schedule.construction_type, schedule.geographic_zone, template_id)
        self._configure(schedule, template, include_weather_buffer)

        activities = self.deriver.derive(line_items, template, custom_activities, schedule_id=schedule.id)
        cpm = analyze_critical_path(activities, schedule.start_date, schedule.id)

        schedule.planned_end_date = cpm.project_finish
        schedule.total_planned_duration = cpm.duration
        schedule.total_planned_cost = round(total_cost(activities), 2)
        schedule.critical_path = list(cpm.critical_path)

        conflicts = self.optimizer.detect_conflicts(activities)
        recommendations = self._recommendations(schedule, template, activities, conflicts)

        with self.engine.begin() as conn:
            self.schedules.save(schedule, conn)
            self.activities.save_many(schedule.id, activities, conn)

        logger.info("generated schedule %s (%s) with %d activities", schedule.id, schedule.name, len(activities))
        self.events.emit(Event(SCHEDULE_GENERATED, {
            "schedule_id": schedule.id,
            "activity_count": len(activities),
            "critical_count": len(cpm.critical_path),
            "recommendations": recommendations,
            "notifier": self.notifier,
        }))
        return GenerationResult(
            schedule=schedule,
            activities=activities,
            critical_path=list(cpm.critical_path),
            recommendations=recommendations,
            resource_conflicts=conflicts,
        )

    # -- optimization --

    def optimize(
        self,
        schedule_id: str,
        goals,
        constraints: Optional[OptimizationConstraints] = None,
        apply: bool = True,
    ) -> OptimizationResult:
        schedule, activities = self.get_schedule(schedule_id)
        result = self.optimizer.optimize(schedule, activities, goals, constraints)
        if apply:
            with self.engine.begin() as conn:
                self.schedules.save(result.optimized_schedule, conn)
                self.activities.save_many(schedule_id, result.optimized_activities, conn)
        self.events.emit(Event(SCHEDULE_OPTIMIZED, {
            "schedule_id": schedule_id,
            "duration_reduction_days": result.improvements.duration_reduction_days,
            "applied": apply,
        }))
        return result

    # -- prediction --

    def predict_delays(
        self,
        schedule_id: str,
        as_of: Optional[date] = None,
        confidence: float = 0.9,
        risk_categories=None,
        include_scenarios: bool = False,
    ) -> DelayPrediction:
        schedule, activities = self.get_schedule(schedule_id)
        as_of = as_of or date.today()
        reports = self.progress.find_by_schedule_id(schedule_id)
        weather_impact = self.weather_factors.average_factor(
            schedule_id, since=as_of - timedelta(days=WEATHER_LOOKBACK_DAYS)
        )
        return self.predictor.predict(
            schedule,
            activities,
            reports,
            as_of,
            confidence=confidence,
            weather_impact=weather_impact,
            risk_categories=risk_categories,
            include_scenarios=include_scenarios,
        )

    # -- progress --

    def track_daily_progress(self, report: ProgressReport) -> ProgressResult:
        schedule, activities = self.get_schedule(report.schedule_id)
        activity = next((a for a in activities if a.id == report.activity_id), None)
        if activity is None:
            raise NotFoundError(
                f"Activity {report.activity_id} not found in schedule {report.schedule_id}",
                schedule_id=report.schedule_id,
                activity_id=report.activity_id,
            )

        activity.completion_percentage = report.progress_percentage
        activity.actual_total_cost += report.actual_cost
        if activity.actual_start_date is None and report.progress_percentage > 0:
            activity.actual_start_date = report.report_date
        if activity.work_quantities is not None:
            activity.work_quantities.completed_quantity = (
                activity.work_quantities.planned_quantity * report.progress_percentage / 100
            )

        expected = round(planned_fraction(activity, report.report_date) * 100, 2)
        if report.progress_percentage >= 100:
            activity.status = ActivityStatus.COMPLETED
            activity.actual_end_date = report.report_date
            start = activity.actual_start_date or report.report_date
            activity.actual_duration = max(1, days_between(start, report.report_date))
            variance = days_between(activity.planned_end_date, report.report_date) if activity.planned_end_date else 0
        else:
            variance = round((expected - report.progress_percentage) / 100 * activity.planned_duration)
            if report.progress_percentage > 0:
                activity.status = ActivityStatus.IN_PROGRESS

        alerts = []
        threshold = schedule.alert_settings.delay_threshold_days
        if variance > threshold:
            if activity.status != ActivityStatus.COMPLETED:
                activity.status = ActivityStatus.DELAYED
            alerts.append({
                "type": "delay",
                "severity": "high" if activity.is_critical_path else "medium",
                "message": f"'{activity.name}' is {variance} day(s) behind schedule",
            })
        if report.quality_issues > 0:
            alerts.append({
                "type": "quality",
                "severity": "medium" if report.quality_issues > 2 else "low",
                "message": f"{report.quality_issues} quality issue(s) reported on '{activity.name}'",
            })
        if report.safety_score is not None and report.safety_score < 80:
            alerts.append({
                "type": "safety",
                "severity": "high",
                "message": f"Safety score {report.safety_score:.0f} on '{activity.name}'",
            })

        schedule.total_actual_cost = round(sum(a.actual_total_cost for a in activities), 2)
        if schedule.actual_start_date is None and activity.actual_start_date is not None:
            schedule.actual_start_date = activity.actual_start_date

        with self.engine.begin() as conn:
            self.progress.save(report, conn)
            self.activities.save(activity, conn)
            self.schedules.save(schedule, conn)

        self.events.emit(Event(PROGRESS_RECORDED, {
            "schedule_id": schedule.id,
            "activity_id": activity.id,
            "alerts": alerts,
            "notifier": self.notifier,
        }))
        return ProgressResult(
            activity=activity,
            expected_progress=expected,
            schedule_variance_days=variance,
            alerts=alerts,
        )
