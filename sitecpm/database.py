# sitecpm/database.py
import logging
import os

from sqlalchemy import (
    JSON, Boolean, Column, Float, ForeignKey, Integer, MetaData, String, Table, create_engine
)

logger = logging.getLogger(__name__)

metadata = MetaData()
gen_folder = "gen"

schedules_table = Table(
    "schedules",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String),
    Column("budget_id", String, nullable=True),
    Column("construction_type", String),
    Column("geographic_zone", String),
    Column("status", String),  # draft, active, on_hold, completed, archived
    Column("start_date", String),
    Column("planned_end_date", String, nullable=True),
    Column("version", Integer, default=0),
    Column("updated_at", String, nullable=True),
    Column("payload", JSON),
)

activities_table = Table(
    "activities",
    metadata,
    Column("id", String, primary_key=True),
    Column("schedule_id", String, ForeignKey("schedules.id"), index=True),
    # insertion order, keeps the topological sort deterministic
    Column("position", Integer),
    Column("name", String),
    Column("activity_type", String),
    Column("status", String),
    Column("planned_start_date", String, nullable=True),
    Column("planned_end_date", String, nullable=True),
    Column("is_critical_path", Boolean, default=False),
    Column("payload", JSON),
)

templates_table = Table(
    "schedule_templates",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String),
    Column("construction_type", String),
    Column("geographic_zone", String),
    Column("scope", String),
    Column("is_verified", Boolean),
    Column("payload", JSON),
)

budgets_table = Table(
    "budgets",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String),
    Column("construction_type", String),
    Column("geographic_zone", String),
    Column("payload", JSON),
)

progress_reports_table = Table(
    "progress_reports",
    metadata,
    Column("id", String, primary_key=True),
    Column("schedule_id", String, ForeignKey("schedules.id"), index=True),
    Column("activity_id", String),
    Column("report_date", String),
    Column("payload", JSON),
)

weather_factors_table = Table(
    "weather_factors",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("schedule_id", String, ForeignKey("schedules.id"), index=True),
    Column("location_key", String),
    Column("forecast_date", String),
    Column("workability", String),
    Column("productivity_factor", Float),
    Column("created_at", String),
    Column("payload", JSON),
)

notifications_table = Table(
    "notifications",
    metadata,
    Column("id", String, primary_key=True),
    Column("severity", String),
    Column("title", String),
    Column("message", String),
    Column("related_entity_type", String),
    Column("related_entity_id", String, nullable=True),
    Column("created_at", String),
    Column("payload", JSON),
)


def init_db(db_url: str = None):
    if not db_url:
        os.makedirs(gen_folder, exist_ok=True)
        db_path = os.path.abspath(os.path.join(gen_folder, "sitecpm.db"))
        db_url = f"sqlite:///{db_path}"
    logger.debug("initializing db at %s", db_url)
    engine = create_engine(db_url)
    metadata.create_all(engine)
    return engine
