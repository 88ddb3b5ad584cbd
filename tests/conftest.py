from datetime import date

import pytest

from sitecpm.database import init_db
from sitecpm.eventing import EventManager
from sitecpm.event_handlers import register_handlers
from sitecpm.models import (
    Activity,
    Budget,
    BudgetLineItem,
    Dependency,
    Precipitation,
    RelationType,
    ScheduleTemplate,
    Temperature,
    WeatherForecast,
    Wind,
)
from sitecpm.planner import SchedulePlanner
from sitecpm.repositories import BudgetRepository, TemplateRepository

PROJECT_START = date(2025, 1, 6)


@pytest.fixture
def project_start():
    return PROJECT_START


@pytest.fixture
def db_url(tmp_path):
    # A file database; each test gets its own.
    return f"sqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
def engine(db_url):
    return init_db(db_url)


@pytest.fixture
def events():
    manager = EventManager()
    register_handlers(manager)
    return manager


@pytest.fixture
def planner(engine, events):
    return SchedulePlanner(engine, events=events)


@pytest.fixture
def make_activity():
    def _make(aid, duration, preds=(), relation=RelationType.FS, lag=0, **kwargs):
        return Activity(
            id=aid,
            name=kwargs.pop("name", aid),
            planned_duration=duration,
            predecessors=[Dependency(activity_id=p, relation_type=relation, lag_days=lag) for p in preds],
            **kwargs,
        )
    return _make


@pytest.fixture
def make_forecast():
    def _make(day, temp=20.0, rain=0.0, wind=0.0, humidity=50.0):
        return WeatherForecast(
            date=day,
            temperature=Temperature(min=temp - 3, max=temp + 3, avg=temp),
            precipitation=Precipitation(probability=1.0 if rain else 0.0, amount=rain),
            wind=Wind(speed=wind),
            humidity=humidity,
        )
    return _make


@pytest.fixture
def template(engine):
    tpl = ScheduleTemplate(
        id="tpl-residential-quito",
        name="Vivienda unifamiliar",
        construction_type="residential",
        geographic_zone="QUITO",
        estimated_duration_days=30,
    )
    TemplateRepository(engine).save(tpl)
    return tpl


@pytest.fixture
def budget(engine):
    b = Budget(
        id="budget-1",
        name="Casa Cumbayá",
        construction_type="residential",
        geographic_zone="QUITO",
        line_items=[
            BudgetLineItem(
                id="li-1",
                description="Excavación de cimientos",
                category="materiales",
                quantity=50,
                unit="m3",
                subtotal=2500,
            ),
            BudgetLineItem(
                id="li-2",
                description="Mano de obra albañil",
                category="mano de obra",
                quantity=10,
                unit="jornal",
                unit_price=40,
            ),
        ],
    )
    BudgetRepository(engine).save(b)
    return b
