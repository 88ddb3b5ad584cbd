# tests/test_cli.py
import json

import pytest
from typer.testing import CliRunner

from sitecpm.main import app
from sitecpm.repositories import ScheduleRepository

runner = CliRunner()


@pytest.fixture
def cli_engine(engine, monkeypatch):
    # Ensure that when main.init_db() is called, it returns our temporary engine.
    monkeypatch.setattr("sitecpm.main.init_db", lambda db_url=None: engine)
    return engine


def generate(budget, template):
    result = runner.invoke(app, ["generate-schedule", budget.id, "Casa", "2025-01-06", "--template-id", template.id])
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def test_init_db(cli_engine):
    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 0
    assert "DB initialized" in result.stdout


def test_ingest_and_generate(cli_engine, template, tmp_path):
    csv = tmp_path / "budget.csv"
    csv.write_text("descripcion,categoria,cantidad,unidad,total\nExcavación de cimientos,materiales,50,m3,2500\n")
    result = runner.invoke(app, ["ingest-budget", str(csv), "Casa", "--budget-id", "B-9"])
    assert result.exit_code == 0, result.output
    assert "B-9" in result.stdout

    result = runner.invoke(app, ["generate-schedule", "B-9", "Casa", "06/01/2025"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["duration_days"] == 2
    assert data["planned_end_date"] == "2025-01-08"
    assert data["activities"] == 1


def test_generate_reports_errors_as_json(cli_engine, budget):
    result = runner.invoke(app, ["generate-schedule", budget.id, "Casa", "2025-01-06"])
    assert result.exit_code == 1
    assert json.loads(result.stdout)["error"] == "ScheduleValidationError"


def test_show_schedule(cli_engine, budget, template):
    data = generate(budget, template)
    result = runner.invoke(app, ["show-schedule", data["schedule_id"]])
    assert result.exit_code == 0
    shown = json.loads(result.stdout)
    assert shown["schedule"]["id"] == data["schedule_id"]
    assert len(shown["activities"]) == 2


def test_show_missing_schedule(cli_engine):
    result = runner.invoke(app, ["show-schedule", "nope"])
    assert result.exit_code == 1
    assert json.loads(result.stdout)["error"] == "NotFoundError"


def test_optimize_dry_run(cli_engine, budget, template):
    data = generate(budget, template)
    result = runner.invoke(app, ["optimize", data["schedule_id"], "--goal", "minimize_risk", "--dry-run"])
    assert result.exit_code == 0, result.output
    out = json.loads(result.stdout)
    assert out["applied"] is False
    assert not ScheduleRepository(cli_engine).find_by_id(data["schedule_id"]).is_optimized


def test_optimize_unknown_goal(cli_engine, budget, template):
    data = generate(budget, template)
    result = runner.invoke(app, ["optimize", data["schedule_id"], "--goal", "go_faster"])
    assert result.exit_code == 1


def test_predict_delays(cli_engine, budget, template):
    data = generate(budget, template)
    result = runner.invoke(
        app, ["predict-delays", data["schedule_id"], "--as-of", "2025-01-06", "--confidence", "0.8", "--scenarios"]
    )
    assert result.exit_code == 0, result.output
    out = json.loads(result.stdout)
    assert out["confidence"] == 0.8
    assert out["scenarios"][0]["name"] == "base"


def test_record_progress(cli_engine, budget, template):
    data = generate(budget, template)
    schedule_id = data["schedule_id"]
    shown = json.loads(runner.invoke(app, ["show-schedule", schedule_id]).stdout)
    activity_id = shown["activities"][0]["id"]

    result = runner.invoke(app, ["record-progress", schedule_id, activity_id, "50", "--date", "2025-01-07"])
    assert result.exit_code == 0, result.output
    out = json.loads(result.stdout)
    assert out[0]["status"] == "in_progress"
    assert out[0]["expected_progress"] == 50


def test_performance_analysis(cli_engine, budget, template):
    generate(budget, template)
    result = runner.invoke(app, ["performance-analysis", "--as-of", "2025-01-06"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["consolidated"]["schedules"] == 1
