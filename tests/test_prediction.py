# tests/test_prediction.py
from datetime import date

import pytest

from sitecpm.critical_path import analyze_critical_path
from sitecpm.errors import ScheduleValidationError
from sitecpm.models import ActivityStatus, Schedule
from sitecpm.performance import TrendSignals
from sitecpm.prediction import DelayPredictor, activity_risk, delay_spread, z_score


@pytest.fixture
def predictor():
    return DelayPredictor()


@pytest.fixture
def chain(make_activity, project_start):
    acts = [
        make_activity("A", 5, planned_total_cost=1000),
        make_activity("B", 5, preds=["A"], planned_total_cost=1000),
    ]
    analyze_critical_path(acts, project_start)
    return acts


def schedule_for(acts, zone="QUITO"):
    return Schedule(
        id="S1",
        name="Casa",
        start_date=date(2025, 1, 6),
        planned_end_date=max(a.planned_end_date for a in acts),
        geographic_zone=zone,
    )


def test_z_scores():
    assert z_score(0.8) == 1.28
    assert z_score(0.9) == 1.645
    assert z_score(0.95) == 1.96
    with pytest.raises(ScheduleValidationError):
        z_score(0.5)


def test_delay_spread():
    assert delay_spread([]) == 5.0
    assert delay_spread([3]) == 5.0
    assert delay_spread([1, 3]) == pytest.approx(1.4142, abs=1e-4)
    assert delay_spread([2, 2]) == 1.0


def test_bounds_are_ordered(predictor, chain, project_start):
    prediction = predictor.predict(schedule_for(chain), chain, [], project_start, confidence=0.9)
    assert prediction.optimistic.delay_days <= prediction.most_likely.delay_days <= prediction.pessimistic.delay_days
    assert prediction.most_likely.probability == 0.9
    assert prediction.optimistic.probability == pytest.approx(0.05)
    assert prediction.pessimistic.probability == pytest.approx(0.05)


def test_on_plan_project_has_no_expected_delay(predictor, chain, project_start):
    prediction = predictor.predict(schedule_for(chain), chain, [], project_start)
    assert prediction.most_likely.delay_days == 0
    assert prediction.most_likely.completion_date == date(2025, 1, 16)
    assert prediction.standard_deviation == 5.0
    assert prediction.pessimistic.delay_days == pytest.approx(8.225, abs=0.01)
    assert prediction.pessimistic.completion_date == date(2025, 1, 25)


def test_behind_schedule_adds_delay(predictor, chain):
    # two days into A with nothing done
    as_of = date(2025, 1, 8)
    prediction = predictor.predict(schedule_for(chain), chain, [], as_of)
    assert prediction.kpis.spi == 0
    assert prediction.most_likely.delay_days == 10


def test_poor_weather_adds_five_days(predictor, chain, project_start):
    prediction = predictor.predict(schedule_for(chain), chain, [], project_start, weather_impact=0.7)
    assert prediction.most_likely.delay_days == 5


def test_falling_productivity_adds_three_days(predictor):
    trends = TrendSignals(recent_productivity=0.5, prior_productivity=1.0)
    assert predictor.risk_adjustment(None, trends) == 3
    assert predictor.risk_adjustment(0.9, None) == 0


def test_invalid_inputs(predictor, chain, project_start):
    with pytest.raises(ScheduleValidationError):
        predictor.predict(schedule_for(chain), chain, [], project_start, confidence=0.75)
    with pytest.raises(ScheduleValidationError):
        predictor.predict(schedule_for(chain), chain, [], project_start, risk_categories=["aliens"])


def test_risk_factor_selection(predictor, chain, project_start):
    prediction = predictor.predict(
        schedule_for(chain, zone="COSTA"), chain, [], project_start, risk_categories=["weather", "quality"]
    )
    assert [(r.category, r.impact) for r in prediction.risk_factors] == [("weather", "high"), ("quality", "low")]
    assert prediction.risk_factors[0].probability == 0.7


def test_scenarios(predictor, chain, project_start):
    prediction = predictor.predict(
        schedule_for(chain, zone="COSTA"), chain, [], project_start, include_scenarios=True
    )
    names = [s.name for s in prediction.scenarios]
    assert names == ["base", "optimized", "risk", "extreme"]
    assert prediction.scenarios[-1].delay_days == prediction.most_likely.delay_days + 21

    quiet = predictor.predict(schedule_for(chain), chain, [], project_start, risk_categories=["quality"],
                              include_scenarios=True)
    assert [s.name for s in quiet.scenarios] == ["base", "optimized", "extreme"]


def test_early_warning_for_late_critical_work(predictor, chain):
    a = chain[0]
    a.status = ActivityStatus.IN_PROGRESS
    a.completion_percentage = 10
    as_of = date(2025, 1, 13)
    assert activity_risk(a, as_of) == 1.0

    prediction = predictor.predict(schedule_for(chain), chain, [], as_of, risk_categories=[])
    warnings = [w for w in prediction.warnings if w.activity_id == "A"]
    assert len(warnings) == 1
    assert warnings[0].severity == "high"
    assert warnings[0].days_until_impact == 0
