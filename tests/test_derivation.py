# tests/test_derivation.py
import pytest

from sitecpm.derivation import ScheduleDeriver
from sitecpm.errors import ScheduleValidationError
from sitecpm.models import (
    ActivityType,
    BudgetLineItem,
    CustomActivity,
    ScheduleTemplate,
    TemplateActivity,
    Trade,
    TradeProductivity,
)


@pytest.fixture
def deriver():
    return ScheduleDeriver()


@pytest.mark.parametrize("description, expected", [
    ("Excavación de cimientos", ActivityType.EXCAVATION),
    ("Hormigón para cimientos", ActivityType.FOUNDATION),
    ("Columnas de hormigón armado", ActivityType.STRUCTURE),
    ("Mampostería de bloque", ActivityType.MASONRY),
    ("Cubierta de teja", ActivityType.ROOFING),
    ("Instalación eléctrica", ActivityType.ELECTRICAL),
    ("Pintura exterior", ActivityType.FINISHING),
    ("Limpieza final de obra", ActivityType.CLEANUP),
    ("Permisos municipales", ActivityType.OTHER),
])
def test_classify_activity_type(deriver, description, expected):
    assert deriver.classify_activity_type(description) == expected


def test_classify_trade(deriver):
    assert deriver.classify_trade("Mano de obra albañil") == Trade.MASONRY
    assert deriver.classify_trade("Pintura exterior") == Trade.PAINTING
    assert deriver.classify_trade("Transporte de material") == Trade.GENERAL


def test_environment_from_description(deriver):
    env = deriver.environment_for("Pintura exterior")
    assert env.weather_sensitive
    assert not env.indoor
    assert deriver.environment_for("Instalación eléctrica").indoor


def test_duration_from_cost(deriver):
    item = BudgetLineItem(description="Excavación de cimientos", quantity=50, subtotal=2500)
    assert deriver.estimate_duration(item, Trade.GENERAL, None) == 2


def test_duration_defaults_to_one_day_minimum(deriver):
    item = BudgetLineItem(description="Replanteo", quantity=1, unit_price=10)
    assert deriver.estimate_duration(item, Trade.GENERAL, None) == 1


def test_duration_from_productivity(deriver):
    template = ScheduleTemplate(
        name="t",
        workforce={Trade.MASONRY: TradeProductivity(min_workers=2, max_workers=4, productivity=10)},
    )
    item = BudgetLineItem(description="Mampostería de bloque", quantity=45, unit="m2", unit_price=20)
    act = deriver.activity_from_line_item(item, template)
    assert act.planned_duration == 3
    assert act.workforce_trades == [Trade.MASONRY]
    assert act.resources.workforce[0].quantity == 2


def test_costs_split_by_category(deriver):
    labor = deriver.activity_from_line_item(
        BudgetLineItem(description="Mano de obra", category="Mano de obra", quantity=10, unit_price=40)
    )
    material = deriver.activity_from_line_item(
        BudgetLineItem(description="Cemento", category="materiales", subtotal=800)
    )
    assert labor.planned_labor_cost == 400
    assert labor.planned_material_cost == 0
    assert material.planned_material_cost == 800
    assert material.planned_total_cost == 800
    assert material.custom_fields.from_budget


def test_derive_budget_items(deriver):
    items = [
        BudgetLineItem(id="li-1", description="Excavación de cimientos", category="materiales", quantity=50, subtotal=2500),
        BudgetLineItem(id="li-2", description="Mano de obra albañil", category="mano de obra", quantity=10, unit_price=40),
    ]
    acts = deriver.derive(items, schedule_id="S1")
    assert len(acts) == 2
    assert acts[0].activity_type == ActivityType.EXCAVATION
    assert acts[0].planned_duration == 2
    assert acts[0].custom_fields.source_line_item_id == "li-1"
    assert all(a.schedule_id == "S1" for a in acts)


def test_template_activities_fill_gaps(deriver):
    template = ScheduleTemplate(
        name="t",
        buffer_percentage=10,
        standard_activities=[
            TemplateActivity(id="t-exc", name="Excavación", activity_type=ActivityType.EXCAVATION, duration_days=3),
            TemplateActivity(id="t-found", name="Cimentación", activity_type=ActivityType.FOUNDATION,
                             duration_days=10, predecessors=["Excavación"]),
            TemplateActivity(id="t-struct", name="Estructura", activity_type=ActivityType.STRUCTURE,
                             duration_days=5, predecessors=["t-found"]),
        ],
    )
    items = [BudgetLineItem(description="Excavación de cimientos", subtotal=2500)]
    acts = deriver.derive(items, template)
    names = [a.name for a in acts]
    assert names == ["Excavación de cimientos", "Cimentación", "Estructura"]

    by_name = {a.name: a for a in acts}
    found = by_name["Cimentación"]
    struct = by_name["Estructura"]
    assert found.planned_duration == 11
    assert found.custom_fields.from_template
    # the covered template step resolves to the budget activity
    assert [d.activity_id for d in found.predecessors] == [acts[0].id]
    assert [d.activity_id for d in acts[0].successors] == [found.id]
    assert struct.planned_duration == 6
    assert [d.activity_id for d in struct.predecessors] == [found.id]
    assert [d.activity_id for d in found.successors] == [struct.id]


def test_blank_line_item_does_not_absorb_template_steps(deriver):
    template = ScheduleTemplate(
        name="t",
        standard_activities=[
            TemplateActivity(name="Cubierta", activity_type=ActivityType.ROOFING, duration_days=4),
            TemplateActivity(name="Limpieza final", activity_type=ActivityType.CLEANUP, duration_days=1),
        ],
    )
    acts = deriver.derive([BudgetLineItem(description="", subtotal=500)], template)
    assert [a.name for a in acts] == ["", "Cubierta", "Limpieza final"]


def test_custom_activities_reference_by_name(deriver):
    items = [BudgetLineItem(description="Mampostería de bloque", subtotal=2000)]
    custom = [CustomActivity(name="Inspección municipal", duration_days=1, predecessors=["Mampostería de bloque"])]
    acts = deriver.derive(items, custom=custom)
    assert acts[1].custom_fields.custom
    assert acts[1].predecessors[0].activity_id == acts[0].id


def test_derive_without_anything_fails(deriver):
    with pytest.raises(ScheduleValidationError):
        deriver.derive([], None, None, schedule_id="S1")
