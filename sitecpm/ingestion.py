# sitecpm/ingestion.py
import json
import logging
import os
from typing import List, Optional

import numpy as np
import pandas as pd

from sitecpm.errors import ScheduleValidationError
from sitecpm.models import Budget, BudgetLineItem, ProgressReport, ScheduleTemplate
from sitecpm.repositories import BudgetRepository, TemplateRepository
from sitecpm.utils import parse_user_date

logger = logging.getLogger(__name__)

BUDGET_COLUMNS = {
    "descripcion": "description",
    "descripción": "description",
    "rubro": "description",
    "categoria": "category",
    "categoría": "category",
    "cantidad": "quantity",
    "unidad": "unit",
    "precio_unitario": "unit_price",
    "precio unitario": "unit_price",
    "total": "subtotal",
}

PROGRESS_COLUMNS = {
    "fecha": "report_date",
    "date": "report_date",
    "avance": "progress_percentage",
    "progress": "progress_percentage",
    "trabajadores": "workers_present",
    "horas": "hours_worked",
}


def _read_table(file_path: str) -> pd.DataFrame:
    ext = os.path.splitext(file_path)[1].lower()
    if ext in (".xlsx", ".xls"):
        df = pd.read_excel(file_path)
    elif ext == ".csv":
        df = pd.read_csv(file_path)
    else:
        raise ScheduleValidationError(f"Unsupported file type: {file_path}")
    return df


def _native(value):
    return value.item() if isinstance(value, np.generic) else value


def _normalize_columns(df: pd.DataFrame, aliases: dict) -> pd.DataFrame:
    columns = {}
    for col in df.columns:
        key = str(col).strip().lower()
        columns[col] = aliases.get(key, key.replace(" ", "_"))
    return df.rename(columns=columns)


def read_budget_file(file_path: str) -> List[BudgetLineItem]:
    df = _normalize_columns(_read_table(file_path), BUDGET_COLUMNS)
    if "description" not in df.columns:
        raise ScheduleValidationError(f"{file_path} has no description column")

    for c in ("quantity", "unit_price", "subtotal"):
        if c in df.columns:
            df[c] = pd.to_numeric(df[c], errors="coerce")
    df = df.dropna(subset=["description"])
    df = df[df["description"].astype(str).str.strip() != ""]
    df = df.replace({np.nan: None})

    items = []
    for _, row in df.iterrows():
        fields = {
            "description": str(row["description"]).strip(),
            "category": str(row.get("category") or ""),
            "quantity": float(row.get("quantity") or 0),
            "unit": str(row.get("unit") or "u"),
            "unit_price": float(row.get("unit_price") or 0),
            "subtotal": float(row["subtotal"]) if row.get("subtotal") is not None else None,
        }
        if row.get("id"):
            fields["id"] = str(row["id"])
        items.append(BudgetLineItem(**fields))
    logger.info("read %d budget line item(s) from %s", len(items), file_path)
    return items


def ingest_budget(
    file_path: str,
    engine,
    name: str,
    construction_type: str = "residential",
    geographic_zone: str = "QUITO",
    budget_id: Optional[str] = None,
) -> Budget:
    items = read_budget_file(file_path)
    budget = Budget(name=name, construction_type=construction_type, geographic_zone=geographic_zone, line_items=items)
    if budget_id:
        budget.id = budget_id
    BudgetRepository(engine).save(budget)
    return budget


def read_progress_file(file_path: str, schedule_id: str) -> List[ProgressReport]:
    df = _normalize_columns(_read_table(file_path), PROGRESS_COLUMNS)
    missing = {"activity_id", "report_date", "progress_percentage"} - set(df.columns)
    if missing:
        raise ScheduleValidationError(f"{file_path} is missing column(s): {', '.join(sorted(missing))}")
    df["report_date"] = pd.to_datetime(df["report_date"], errors="coerce").dt.strftime("%Y-%m-%d")
    df = df.replace({np.nan: None})

    reports = []
    for _, row in df.iterrows():
        day = parse_user_date(row["report_date"])
        if day is None or row.get("progress_percentage") is None:
            logger.warning("skipping progress row without date or progress: %s", dict(row))
            continue
        payload = {
            k: _native(v) for k, v in row.to_dict().items()
            if v is not None and k in ProgressReport.model_fields
        }
        payload.update(schedule_id=schedule_id, activity_id=str(row["activity_id"]), report_date=day)
        reports.append(ProgressReport(**payload))
    return reports


def load_template_file(file_path: str, engine) -> ScheduleTemplate:
    with open(file_path, "r", encoding="utf-8") as f:
        template = ScheduleTemplate.model_validate(json.load(f))
    TemplateRepository(engine).save(template)
    logger.info("loaded template %s (%s)", template.id, template.name)
    return template
