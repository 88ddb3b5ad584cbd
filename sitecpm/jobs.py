# sitecpm/jobs.py
"""
Periodic batch jobs. Both iterate the active schedules one at a time; a
failure on one schedule (or one weather location) is logged and reported but
does not stop the run.
"""
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional, Tuple

from sitecpm.config import Settings, zone_coordinates
from sitecpm.critical_path import analyze_critical_path
from sitecpm.errors import ExternalServiceError
from sitecpm.eventing import WEATHER_ALERT, Event, event_manager
from sitecpm.models import Schedule, WeatherForecast
from sitecpm.notifications import NotificationService
from sitecpm.performance import PerformanceAnalyzer, PerformanceReport, consolidated_report
from sitecpm.repositories import (
    ActivityRepository,
    ProgressRepository,
    ScheduleRepository,
    WeatherFactorRepository,
)
from sitecpm.weather import WeatherProvider, apply_postponements, assess_schedule, detect_alerts

logger = logging.getLogger(__name__)


def location_key(schedule: Schedule) -> Tuple[str, float, float]:
    if schedule.latitude is not None and schedule.longitude is not None:
        lat, lon = schedule.latitude, schedule.longitude
    else:
        lat, lon = zone_coordinates(schedule.geographic_zone)
    return f"{lat},{lon}", lat, lon


@dataclass
class WeatherJobReport:
    locations_total: int = 0
    locations_processed: int = 0
    failed_locations: Dict[str, str] = field(default_factory=dict)
    schedules_updated: List[str] = field(default_factory=list)
    failed_schedules: Dict[str, str] = field(default_factory=dict)
    alerts: int = 0
    postponements: Dict[str, Dict[str, int]] = field(default_factory=dict)

    @property
    def partial_success(self) -> bool:
        return bool(self.failed_locations or self.failed_schedules) and bool(self.schedules_updated)

    def as_dict(self) -> dict:
        return {
            "locations_total": self.locations_total,
            "locations_processed": self.locations_processed,
            "failed_locations": self.failed_locations,
            "schedules_updated": self.schedules_updated,
            "failed_schedules": self.failed_schedules,
            "alerts": self.alerts,
            "postponements": self.postponements,
            "partial_success": self.partial_success,
        }


class WeatherUpdateJob:
    def __init__(
        self,
        engine,
        provider: WeatherProvider,
        settings: Optional[Settings] = None,
        notifier: Optional[NotificationService] = None,
        events=event_manager,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.engine = engine
        self.provider = provider
        self.settings = settings or Settings.from_env()
        self.notifier = notifier or NotificationService(engine)
        self.events = events
        self.sleep = sleep
        self.schedules = ScheduleRepository(engine)
        self.activities = ActivityRepository(engine)
        self.weather_factors = WeatherFactorRepository(engine)

    def group_by_location(self, schedules: List[Schedule]) -> "OrderedDict[str, Tuple[float, float, List[Schedule]]]":
        groups: "OrderedDict[str, Tuple[float, float, List[Schedule]]]" = OrderedDict()
        for schedule in schedules:
            key, lat, lon = location_key(schedule)
            groups.setdefault(key, (lat, lon, []))[2].append(schedule)
        return groups

    def run(self) -> WeatherJobReport:
        report = WeatherJobReport()
        groups = self.group_by_location(self.schedules.find_active())
        report.locations_total = len(groups)

        for index, (key, (lat, lon, schedules)) in enumerate(groups.items()):
            if index > 0 and self.settings.weather_request_delay > 0:
                self.sleep(self.settings.weather_request_delay)
            try:
                forecasts = self.provider.forecast(lat, lon)
            except ExternalServiceError as exc:
                logger.warning("skipping weather for location %s: %s", key, exc.message)
                report.failed_locations[key] = exc.message
                continue
            except Exception as exc:
                logger.exception("weather provider failed for location %s", key)
                report.failed_locations[key] = str(exc)
                continue
            report.locations_processed += 1

            for schedule in schedules:
                try:
                    alerts, shifts = self.update_schedule(schedule, forecasts, key)
                except Exception as exc:
                    logger.exception("weather update failed for schedule %s", schedule.id)
                    report.failed_schedules[schedule.id] = str(exc)
                    continue
                report.schedules_updated.append(schedule.id)
                report.alerts += alerts
                if shifts:
                    report.postponements[schedule.id] = shifts

        logger.info(
            "weather update: %d/%d locations, %d schedule(s) updated, %d alert(s)",
            report.locations_processed, report.locations_total, len(report.schedules_updated), report.alerts,
        )
        return report

    def update_schedule(self, schedule: Schedule, forecasts: List[WeatherForecast], key: str) -> Tuple[int, Dict[str, int]]:
        activities = self.activities.find_by_schedule_id(schedule.id)
        impacts = assess_schedule(activities, forecasts)
        alerts = detect_alerts(forecasts)
        shifts = apply_postponements(activities, alerts)
        if shifts:
            # push successors of postponed work; nothing moves earlier
            cpm = analyze_critical_path(activities, schedule.start_date, schedule.id, keep_starts=True)
            schedule.planned_end_date = cpm.project_finish
            schedule.total_planned_duration = cpm.duration
            schedule.critical_path = list(cpm.critical_path)

        with self.engine.begin() as conn:
            self.weather_factors.save_many(schedule.id, key, impacts, conn)
            if shifts:
                self.activities.save_many(schedule.id, activities, conn)
                self.schedules.save(schedule, conn)

        for alert in alerts:
            self.events.emit(Event(WEATHER_ALERT, {
                "schedule_id": schedule.id,
                "date": alert.day.isoformat(),
                "alert_type": alert.alert_type,
                "severity": alert.severity,
                "message": alert.message,
                "affected_activity_ids": alert.affected_activity_ids,
                "notifier": self.notifier,
            }))
        return len(alerts), shifts


@dataclass
class PerformanceJobReport:
    reports: List[PerformanceReport] = field(default_factory=list)
    failed_schedules: Dict[str, str] = field(default_factory=dict)
    consolidated: dict = field(default_factory=dict)


class PerformanceAnalysisJob:
    def __init__(
        self,
        engine,
        analyzer: Optional[PerformanceAnalyzer] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.engine = engine
        self.analyzer = analyzer or PerformanceAnalyzer()
        self.notifier = notifier or NotificationService(engine)
        self.schedules = ScheduleRepository(engine)
        self.activities = ActivityRepository(engine)
        self.progress = ProgressRepository(engine)

    def run(self, as_of: Optional[date] = None) -> PerformanceJobReport:
        as_of = as_of or date.today()
        job = PerformanceJobReport()
        for schedule in self.schedules.find_active():
            try:
                report = self.analyzer.analyze(
                    schedule,
                    self.activities.find_by_schedule_id(schedule.id),
                    self.progress.find_by_schedule_id(schedule.id),
                    as_of,
                )
            except Exception as exc:
                logger.exception("performance analysis failed for schedule %s", schedule.id)
                job.failed_schedules[schedule.id] = str(exc)
                self.notifier.send(
                    "medium", "Performance analysis failed", str(exc), related_entity_id=schedule.id
                )
                continue
            job.reports.append(report)
            for alert in report.alerts:
                if alert.severity == "HIGH":
                    self.notifier.send(
                        "high",
                        f"Critical performance alert: {alert.metric}",
                        alert.message,
                        related_entity_id=schedule.id,
                        metadata={"kpis": report.kpis.as_dict()},
                    )
        job.consolidated = consolidated_report(job.reports)
        logger.info(
            "performance analysis: %d schedule(s) analysed, %d failed",
            len(job.reports), len(job.failed_schedules),
        )
        return job
