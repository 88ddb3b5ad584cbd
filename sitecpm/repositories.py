# sitecpm/repositories.py
from contextlib import contextmanager
from datetime import date
from typing import List, Optional

from sqlalchemy import delete, insert, select, update

from sitecpm.database import (
    activities_table,
    budgets_table,
    notifications_table,
    progress_reports_table,
    schedules_table,
    templates_table,
    weather_factors_table,
)
from sitecpm.models import (
    Activity,
    Budget,
    Notification,
    ProgressReport,
    Schedule,
    ScheduleStatus,
    ScheduleTemplate,
)
from sitecpm.utils import utc_now
from sitecpm.weather import DailyWeatherImpact


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


class Repository:
    """Base for the table gateways. Methods take an optional open connection
    so several writes can share one transaction."""

    def __init__(self, engine):
        self.engine = engine

    @contextmanager
    def _tx(self, conn=None):
        if conn is not None:
            yield conn
        else:
            with self.engine.begin() as new_conn:
                yield new_conn

    def _upsert(self, conn, table, key: str, values: dict) -> None:
        existing = conn.execute(select(table.c.id).where(table.c.id == key)).fetchone()
        if existing:
            conn.execute(update(table).where(table.c.id == key).values(**values))
        else:
            conn.execute(insert(table), {"id": key, **values})


class ScheduleRepository(Repository):
    def find_by_id(self, schedule_id: str) -> Optional[Schedule]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(schedules_table.c.payload).where(schedules_table.c.id == schedule_id)
            ).fetchone()
        return Schedule.model_validate(row.payload) if row else None

    def find_by_status(self, status: ScheduleStatus) -> List[Schedule]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(schedules_table.c.payload)
                .where(schedules_table.c.status == status.value)
                .order_by(schedules_table.c.name)
            ).fetchall()
        return [Schedule.model_validate(r.payload) for r in rows]

    def find_active(self) -> List[Schedule]:
        return self.find_by_status(ScheduleStatus.ACTIVE)

    def save(self, schedule: Schedule, conn=None) -> Schedule:
        """Last write wins; every save bumps the version."""
        schedule.version += 1
        schedule.updated_at = utc_now()
        values = {
            "name": schedule.name,
            "budget_id": schedule.budget_id,
            "construction_type": schedule.construction_type,
            "geographic_zone": schedule.geographic_zone,
            "status": schedule.status.value,
            "start_date": _iso(schedule.start_date),
            "planned_end_date": _iso(schedule.planned_end_date),
            "version": schedule.version,
            "updated_at": _iso(schedule.updated_at),
            "payload": schedule.model_dump(mode="json"),
        }
        with self._tx(conn) as c:
            self._upsert(c, schedules_table, schedule.id, values)
        return schedule


class ActivityRepository(Repository):
    @staticmethod
    def _values(activity: Activity, position: int) -> dict:
        return {
            "schedule_id": activity.schedule_id,
            "position": position,
            "name": activity.name,
            "activity_type": activity.activity_type.value,
            "status": activity.status.value,
            "planned_start_date": _iso(activity.planned_start_date),
            "planned_end_date": _iso(activity.planned_end_date),
            "is_critical_path": activity.is_critical_path,
            "payload": activity.model_dump(mode="json"),
        }

    def find_by_id(self, activity_id: str) -> Optional[Activity]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(activities_table.c.payload).where(activities_table.c.id == activity_id)
            ).fetchone()
        return Activity.model_validate(row.payload) if row else None

    def find_by_schedule_id(self, schedule_id: str) -> List[Activity]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(activities_table.c.payload)
                .where(activities_table.c.schedule_id == schedule_id)
                .order_by(activities_table.c.position)
            ).fetchall()
        return [Activity.model_validate(r.payload) for r in rows]

    def save(self, activity: Activity, conn=None) -> Activity:
        with self._tx(conn) as c:
            row = c.execute(
                select(activities_table.c.position).where(activities_table.c.id == activity.id)
            ).fetchone()
            if row is None:
                last = c.execute(
                    select(activities_table.c.position)
                    .where(activities_table.c.schedule_id == activity.schedule_id)
                    .order_by(activities_table.c.position.desc())
                ).first()
                position = (last.position + 1) if last else 0
            else:
                position = row.position
            self._upsert(c, activities_table, activity.id, self._values(activity, position))
        return activity

    def save_many(self, schedule_id: str, activities: List[Activity], conn=None) -> List[Activity]:
        """Replaces the schedule's whole activity set, keeping list order."""
        with self._tx(conn) as c:
            c.execute(delete(activities_table).where(activities_table.c.schedule_id == schedule_id))
            rows = []
            for position, act in enumerate(activities):
                act.schedule_id = schedule_id
                rows.append({"id": act.id, **self._values(act, position)})
            if rows:
                c.execute(insert(activities_table), rows)
        return activities


class TemplateRepository(Repository):
    def find_by_id(self, template_id: str) -> Optional[ScheduleTemplate]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(templates_table.c.payload).where(templates_table.c.id == template_id)
            ).fetchone()
        return ScheduleTemplate.model_validate(row.payload) if row else None

    def find_by_filter(
        self,
        construction_type: str,
        geographic_zone: str,
        scope: str = "system",
        verified_only: bool = True,
    ) -> List[ScheduleTemplate]:
        query = (
            select(templates_table.c.payload)
            .where(templates_table.c.construction_type == construction_type)
            .where(templates_table.c.geographic_zone == geographic_zone)
            .where(templates_table.c.scope == scope)
        )
        if verified_only:
            query = query.where(templates_table.c.is_verified.is_(True))
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(templates_table.c.name)).fetchall()
        return [ScheduleTemplate.model_validate(r.payload) for r in rows]

    def save(self, template: ScheduleTemplate, conn=None) -> ScheduleTemplate:
        values = {
            "name": template.name,
            "construction_type": template.construction_type,
            "geographic_zone": template.geographic_zone,
            "scope": template.scope,
            "is_verified": template.is_verified,
            "payload": template.model_dump(mode="json"),
        }
        with self._tx(conn) as c:
            self._upsert(c, templates_table, template.id, values)
        return template


class BudgetRepository(Repository):
    def find_by_id(self, budget_id: str) -> Optional[Budget]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(budgets_table.c.payload).where(budgets_table.c.id == budget_id)
            ).fetchone()
        return Budget.model_validate(row.payload) if row else None

    def save(self, budget: Budget, conn=None) -> Budget:
        values = {
            "name": budget.name,
            "construction_type": budget.construction_type,
            "geographic_zone": budget.geographic_zone,
            "payload": budget.model_dump(mode="json"),
        }
        with self._tx(conn) as c:
            self._upsert(c, budgets_table, budget.id, values)
        return budget


class ProgressRepository(Repository):
    def save(self, report: ProgressReport, conn=None) -> ProgressReport:
        values = {
            "schedule_id": report.schedule_id,
            "activity_id": report.activity_id,
            "report_date": _iso(report.report_date),
            "payload": report.model_dump(mode="json"),
        }
        with self._tx(conn) as c:
            self._upsert(c, progress_reports_table, report.id, values)
        return report

    def find_by_schedule_id(self, schedule_id: str, since: Optional[date] = None) -> List[ProgressReport]:
        query = select(progress_reports_table.c.payload).where(progress_reports_table.c.schedule_id == schedule_id)
        if since is not None:
            query = query.where(progress_reports_table.c.report_date >= since.isoformat())
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(progress_reports_table.c.report_date)).fetchall()
        return [ProgressReport.model_validate(r.payload) for r in rows]


class WeatherFactorRepository(Repository):
    def save_many(self, schedule_id: str, location_key: str, impacts: List[DailyWeatherImpact], conn=None) -> int:
        now = utc_now().isoformat()
        rows = [
            {
                "schedule_id": schedule_id,
                "location_key": location_key,
                "forecast_date": day.day.isoformat(),
                "workability": day.workability,
                "productivity_factor": day.productivity_factor,
                "created_at": now,
                "payload": {
                    "score": day.score,
                    "adverse": day.adverse,
                    "activity_impacts": [
                        {"activity_id": i.activity_id, "factor": i.factor, "impact": i.impact}
                        for i in day.activity_impacts
                    ],
                },
            }
            for day in impacts
        ]
        with self._tx(conn) as c:
            if rows:
                c.execute(insert(weather_factors_table), rows)
        return len(rows)

    def average_factor(self, schedule_id: str, since: Optional[date] = None) -> Optional[float]:
        query = select(weather_factors_table.c.productivity_factor).where(
            weather_factors_table.c.schedule_id == schedule_id
        )
        if since is not None:
            query = query.where(weather_factors_table.c.forecast_date >= since.isoformat())
        with self.engine.connect() as conn:
            values = [r.productivity_factor for r in conn.execute(query).fetchall()]
        return sum(values) / len(values) if values else None


class NotificationRepository(Repository):
    def save(self, notification: Notification, conn=None) -> Notification:
        values = {
            "severity": notification.severity,
            "title": notification.title,
            "message": notification.message,
            "related_entity_type": notification.related_entity_type,
            "related_entity_id": notification.related_entity_id,
            "created_at": _iso(notification.created_at),
            "payload": notification.model_dump(mode="json"),
        }
        with self._tx(conn) as c:
            self._upsert(c, notifications_table, notification.id, values)
        return notification

    def find_all(self) -> List[Notification]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(notifications_table.c.payload).order_by(notifications_table.c.created_at)
            ).fetchall()
        return [Notification.model_validate(r.payload) for r in rows]
