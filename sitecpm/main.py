import json
import logging
import os
from dataclasses import asdict
from datetime import date
from typing import List, Optional

import typer
from dotenv import load_dotenv
load_dotenv()

from sitecpm.config import Settings
from sitecpm.database import init_db
from sitecpm.errors import SchedulingError
from sitecpm.ingestion import ingest_budget, load_template_file, read_progress_file
from sitecpm.jobs import PerformanceAnalysisJob, WeatherUpdateJob
from sitecpm.models import OptimizationConstraints, ProgressReport
from sitecpm.planner import SchedulePlanner
from sitecpm.utils import parse_user_date
from sitecpm.weather import OpenWeatherMapProvider

app = typer.Typer(help="Construction schedule generation and critical-path analysis.")


@app.callback()
def configure(log_level: str = typer.Option(os.getenv("SITECPM_LOG_LEVEL", "WARNING"), help="Logging level")):
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def get_engine(db_url: Optional[str] = None):
    return init_db(db_url or Settings.from_env().db_url)


def echo_json(data):
    typer.echo(json.dumps(data, indent=2, default=str))


def parse_date_option(value: Optional[str], label: str) -> Optional[date]:
    if value is None:
        return None
    parsed = parse_user_date(value)
    if parsed is None:
        raise typer.BadParameter(f"could not parse {label} '{value}'")
    return parsed


def fail(exc: SchedulingError):
    echo_json(exc.to_dict())
    raise typer.Exit(code=1)


@app.command("init-db")
def init_db_cli(db_url: str = typer.Option(None, help="SQLAlchemy database URL")):
    engine = get_engine(db_url)
    typer.echo(f"DB initialized at: {engine.url}")


@app.command("ingest-budget")
def ingest_budget_cli(
    file_path: str,
    name: str,
    construction_type: str = typer.Option("residential"),
    zone: str = typer.Option("QUITO", help="Geographic zone"),
    budget_id: str = typer.Option(None),
    db_url: str = typer.Option(None),
):
    engine = get_engine(db_url)
    try:
        budget = ingest_budget(file_path, engine, name, construction_type, zone.upper(), budget_id)
    except SchedulingError as exc:
        fail(exc)
    typer.echo(f"Budget {budget.id} stored with {len(budget.line_items)} line item(s).")


@app.command("load-template")
def load_template_cli(file_path: str, db_url: str = typer.Option(None)):
    engine = get_engine(db_url)
    template = load_template_file(file_path, engine)
    typer.echo(f"Template {template.id} ({template.name}) loaded.")


@app.command("generate-schedule")
def generate_schedule_cli(
    budget_id: str,
    name: str,
    start_date: str,
    template_id: str = typer.Option(None),
    zone: str = typer.Option(None, help="Override the budget's geographic zone"),
    weather_buffer: bool = typer.Option(False, help="Add a 15% weather buffer"),
    db_url: str = typer.Option(None),
):
    start = parse_date_option(start_date, "start date")
    planner = SchedulePlanner(get_engine(db_url))
    try:
        result = planner.generate_from_budget(
            budget_id,
            name,
            start,
            template_id=template_id,
            geographic_zone=zone.upper() if zone else None,
            include_weather_buffer=weather_buffer,
        )
    except SchedulingError as exc:
        fail(exc)
    echo_json({
        "schedule_id": result.schedule.id,
        "start_date": result.schedule.start_date,
        "planned_end_date": result.schedule.planned_end_date,
        "duration_days": result.schedule.total_planned_duration,
        "total_cost": result.schedule.total_planned_cost,
        "activities": len(result.activities),
        "critical_path": result.critical_path,
        "recommendations": result.recommendations,
    })


@app.command("optimize")
def optimize_cli(
    schedule_id: str,
    goal: List[str] = typer.Option(..., help="minimize_duration, minimize_cost, maximize_resource_utilization, minimize_risk"),
    max_duration: int = typer.Option(None),
    max_budget: float = typer.Option(None),
    fixed: List[str] = typer.Option([], help="Activity ids that must not move"),
    dry_run: bool = typer.Option(False, help="Report without saving"),
    db_url: str = typer.Option(None),
):
    planner = SchedulePlanner(get_engine(db_url))
    constraints = OptimizationConstraints(max_duration=max_duration, max_budget=max_budget, fixed_activities=list(fixed))
    try:
        result = planner.optimize(schedule_id, goal, constraints, apply=not dry_run)
    except SchedulingError as exc:
        fail(exc)
    echo_json({
        "schedule_id": schedule_id,
        "original_duration": result.original_schedule.total_planned_duration,
        "optimized_duration": result.optimized_schedule.total_planned_duration,
        "improvements": asdict(result.improvements),
        "max_duration_met": result.max_duration_met,
        "actions": [asdict(a) for a in result.actions],
        "conflicts": [asdict(c) for c in result.conflicts],
        "applied": not dry_run,
    })


@app.command("predict-delays")
def predict_delays_cli(
    schedule_id: str,
    as_of: str = typer.Option(None, help="Date of the forecast (default today)"),
    confidence: float = typer.Option(0.9, help="0.8, 0.9 or 0.95"),
    scenarios: bool = typer.Option(False),
    db_url: str = typer.Option(None),
):
    planner = SchedulePlanner(get_engine(db_url))
    try:
        prediction = planner.predict_delays(
            schedule_id,
            as_of=parse_date_option(as_of, "as-of date"),
            confidence=confidence,
            include_scenarios=scenarios,
        )
    except SchedulingError as exc:
        fail(exc)
    echo_json(asdict(prediction))


@app.command("record-progress")
def record_progress_cli(
    schedule_id: str,
    activity_id: str = typer.Argument(None),
    percent: float = typer.Argument(None),
    report_date: str = typer.Option(None, "--date"),
    workers: int = typer.Option(0),
    hours: float = typer.Option(0.0),
    quality: float = typer.Option(None),
    safety: float = typer.Option(None),
    quality_issues: int = typer.Option(0),
    file: str = typer.Option(None, help="CSV/Excel file with one report per row"),
    db_url: str = typer.Option(None),
):
    planner = SchedulePlanner(get_engine(db_url))
    if file:
        reports = read_progress_file(file, schedule_id)
    elif activity_id is None or percent is None:
        raise typer.BadParameter("give ACTIVITY_ID and PERCENT, or --file")
    else:
        reports = [ProgressReport(
            schedule_id=schedule_id,
            activity_id=activity_id,
            report_date=parse_date_option(report_date, "date") or date.today(),
            progress_percentage=percent,
            workers_present=workers,
            hours_worked=hours,
            quality_score=quality,
            safety_score=safety,
            quality_issues=quality_issues,
        )]
    results = []
    try:
        for report in reports:
            outcome = planner.track_daily_progress(report)
            results.append({
                "activity_id": outcome.activity.id,
                "status": outcome.activity.status.value,
                "expected_progress": outcome.expected_progress,
                "schedule_variance_days": outcome.schedule_variance_days,
                "alerts": outcome.alerts,
            })
    except SchedulingError as exc:
        fail(exc)
    echo_json(results)


@app.command("weather-update")
def weather_update_cli(db_url: str = typer.Option(None)):
    settings = Settings.from_env()
    provider = OpenWeatherMapProvider(
        settings.weather_api_key,
        base_url=settings.weather_api_url,
        timeout=settings.weather_timeout,
        max_retries=settings.weather_max_retries,
    )
    job = WeatherUpdateJob(get_engine(db_url), provider, settings=settings)
    echo_json(job.run().as_dict())


@app.command("performance-analysis")
def performance_analysis_cli(as_of: str = typer.Option(None), db_url: str = typer.Option(None)):
    job = PerformanceAnalysisJob(get_engine(db_url))
    result = job.run(parse_date_option(as_of, "as-of date"))
    echo_json({
        "consolidated": result.consolidated,
        "failed_schedules": result.failed_schedules,
    })


@app.command("show-schedule")
def show_schedule_cli(schedule_id: str, db_url: str = typer.Option(None)):
    planner = SchedulePlanner(get_engine(db_url))
    try:
        schedule, activities = planner.get_schedule(schedule_id)
    except SchedulingError as exc:
        fail(exc)
    echo_json({
        "schedule": schedule.model_dump(mode="json"),
        "activities": [
            {
                "id": a.id,
                "name": a.name,
                "type": a.activity_type.value,
                "start": a.planned_start_date,
                "end": a.planned_end_date,
                "duration": a.planned_duration,
                "total_float": a.total_float,
                "critical": a.is_critical_path,
                "status": a.status.value,
                "completion": a.completion_percentage,
            }
            for a in activities
        ],
    })


def main():
    app()


if __name__ == "__main__":
    main()
