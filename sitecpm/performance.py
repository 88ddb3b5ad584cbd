# sitecpm/performance.py
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np

from sitecpm.config import INDUSTRY_BENCHMARKS
from sitecpm.models import Activity, ProgressReport, Schedule
from sitecpm.utils import days_between

logger = logging.getLogger(__name__)

TREND_WINDOW_DAYS = 30
TREND_THRESHOLD = 0.05


def _mean(values) -> Optional[float]:
    values = [v for v in values if v is not None]
    if not values:
        return None
    return float(np.mean(values))


def planned_fraction(activity: Activity, as_of: date) -> float:
    """Share of an activity's duration that should be done by as_of."""
    if activity.planned_start_date is None or activity.planned_end_date is None:
        return 0.0
    if as_of <= activity.planned_start_date:
        return 0.0
    if as_of >= activity.planned_end_date:
        return 1.0
    total = days_between(activity.planned_start_date, activity.planned_end_date)
    return days_between(activity.planned_start_date, as_of) / total if total > 0 else 1.0


def earned_value(activities: List[Activity], as_of: date) -> Tuple[float, float, float]:
    """(planned value, earned value, actual cost) as of a date."""
    pv = sum(a.planned_total_cost * planned_fraction(a, as_of) for a in activities)
    ev = sum(a.planned_total_cost * a.completion_percentage / 100 for a in activities)
    ac = sum(a.actual_total_cost for a in activities)
    return pv, ev, ac


@dataclass
class KPIs:
    spi: float = 1.0
    cpi: float = 1.0
    quality_index: float = 100.0
    productivity_index: float = 1.0
    safety_index: float = 100.0

    def as_dict(self) -> Dict[str, float]:
        return {
            "spi": self.spi,
            "cpi": self.cpi,
            "quality": self.quality_index,
            "productivity": self.productivity_index,
            "safety": self.safety_index,
        }


def calculate_kpis(activities: List[Activity], reports: List[ProgressReport], as_of: date) -> KPIs:
    pv, ev, ac = earned_value(activities, as_of)
    quality = _mean(r.quality_score for r in reports)
    productivity = _mean(r.productivity_rate for r in reports)
    safety = _mean(r.safety_score for r in reports)
    return KPIs(
        spi=round(ev / pv, 4) if pv > 0 else 1.0,
        cpi=round(ev / ac, 4) if ac > 0 else 1.0,
        quality_index=round(quality, 2) if quality is not None else 100.0,
        productivity_index=round(productivity, 4) if productivity is not None else 1.0,
        safety_index=round(safety, 2) if safety is not None else 100.0,
    )


@dataclass
class TrendSignals:
    """Averages over the last 30 days and the 30 days before that."""
    recent_productivity: Optional[float] = None
    prior_productivity: Optional[float] = None
    recent_quality: Optional[float] = None
    prior_quality: Optional[float] = None
    recent_safety: Optional[float] = None
    prior_safety: Optional[float] = None


def trend_signals(reports: List[ProgressReport], as_of: date) -> TrendSignals:
    recent_from = as_of - timedelta(days=TREND_WINDOW_DAYS)
    prior_from = as_of - timedelta(days=2 * TREND_WINDOW_DAYS)
    recent = [r for r in reports if recent_from < r.report_date <= as_of]
    prior = [r for r in reports if prior_from < r.report_date <= recent_from]
    return TrendSignals(
        recent_productivity=_mean(r.productivity_rate for r in recent),
        prior_productivity=_mean(r.productivity_rate for r in prior),
        recent_quality=_mean(r.quality_score for r in recent),
        prior_quality=_mean(r.quality_score for r in prior),
        recent_safety=_mean(r.safety_score for r in recent),
        prior_safety=_mean(r.safety_score for r in prior),
    )


def trend_direction(recent: Optional[float], prior: Optional[float], threshold: float = TREND_THRESHOLD) -> str:
    if recent is None or prior is None or prior == 0:
        return "stable"
    change = (recent - prior) / prior
    if change > threshold:
        return "improving"
    if change < -threshold:
        return "declining"
    return "stable"


@dataclass
class PerformanceAlert:
    severity: str
    metric: str
    message: str


@dataclass
class PerformanceReport:
    schedule_id: str
    as_of: date
    kpis: KPIs
    trends: Dict[str, str] = field(default_factory=dict)
    benchmarks: Dict[str, str] = field(default_factory=dict)
    recommendations: List[str] = field(default_factory=list)
    alerts: List[PerformanceAlert] = field(default_factory=list)

    @property
    def has_critical_alerts(self) -> bool:
        return any(a.severity == "HIGH" for a in self.alerts)


class PerformanceAnalyzer:
    def __init__(self, benchmarks: Mapping[str, float] = INDUSTRY_BENCHMARKS):
        self.benchmarks = benchmarks

    def compare_to_benchmarks(self, kpis: KPIs) -> Dict[str, str]:
        result = {}
        for metric, value in kpis.as_dict().items():
            benchmark = self.benchmarks.get(metric)
            if not benchmark:
                continue
            ratio = value / benchmark
            if ratio > 1.05:
                result[metric] = "above"
            elif ratio < 0.95:
                result[metric] = "below"
            else:
                result[metric] = "at"
        return result

    def analyze(
        self,
        schedule: Schedule,
        activities: List[Activity],
        reports: List[ProgressReport],
        as_of: date,
    ) -> PerformanceReport:
        kpis = calculate_kpis(activities, reports, as_of)
        signals = trend_signals(reports, as_of)
        trends = {
            "productivity": trend_direction(signals.recent_productivity, signals.prior_productivity),
            "quality": trend_direction(signals.recent_quality, signals.prior_quality),
            "safety": trend_direction(signals.recent_safety, signals.prior_safety),
        }
        benchmarks = self.compare_to_benchmarks(kpis)

        recommendations = []
        if kpis.spi < 0.9:
            recommendations.append("Schedule is behind plan: add crews or overtime on critical activities")
        if kpis.cpi < 0.95:
            recommendations.append("Costs exceed earned value: review resource allocation and purchasing")
        if kpis.quality_index < 85:
            recommendations.append("Quality below target: strengthen inspections and supervision")
        if kpis.productivity_index < 0.6:
            recommendations.append("Low productivity: review crew composition and work methods")
        if kpis.safety_index < 90:
            recommendations.append("Safety below target: reinforce safety training and site controls")
        for metric, direction in trends.items():
            if direction == "declining":
                recommendations.append(f"{metric.capitalize()} is declining: investigate the cause this week")
        for metric, position in benchmarks.items():
            if position == "below":
                recommendations.append(f"{metric} is below the industry benchmark of {self.benchmarks[metric]}")

        alerts = []
        if kpis.spi < 0.8:
            alerts.append(PerformanceAlert("HIGH", "spi", f"Critical schedule delay: SPI {kpis.spi:.2f}"))
        if kpis.cpi < 0.8:
            alerts.append(PerformanceAlert("HIGH", "cpi", f"Critical cost overrun: CPI {kpis.cpi:.2f}"))
        if kpis.safety_index < 80:
            alerts.append(PerformanceAlert("HIGH", "safety", f"Safety index at {kpis.safety_index:.0f}"))
        for metric, direction in trends.items():
            if direction == "declining":
                alerts.append(PerformanceAlert("MEDIUM", metric, f"Declining {metric} trend"))

        logger.debug("performance for schedule %s as of %s: %s", schedule.id, as_of, kpis)
        return PerformanceReport(
            schedule_id=schedule.id,
            as_of=as_of,
            kpis=kpis,
            trends=trends,
            benchmarks=benchmarks,
            recommendations=recommendations,
            alerts=alerts,
        )


def consolidated_report(reports: List[PerformanceReport], top: int = 5) -> dict:
    """Portfolio-level summary over several schedule reports."""
    if not reports:
        return {"schedules": 0, "averages": {}, "critical_issues": [], "top_recommendations": [], "distribution": {}}

    averages = {
        metric: round(float(np.mean([getattr(r.kpis, attr) for r in reports])), 4)
        for metric, attr in (
            ("spi", "spi"),
            ("cpi", "cpi"),
            ("quality", "quality_index"),
            ("productivity", "productivity_index"),
            ("safety", "safety_index"),
        )
    }
    critical = [
        {"schedule_id": r.schedule_id, "metric": a.metric, "message": a.message}
        for r in reports for a in r.alerts if a.severity == "HIGH"
    ]
    counts: Dict[str, int] = {}
    for r in reports:
        for rec in r.recommendations:
            counts[rec] = counts.get(rec, 0) + 1
    top_recs = [rec for rec, _ in sorted(counts.items(), key=lambda kv: -kv[1])[:top]]

    distribution = {"on_track": 0, "at_risk": 0, "critical": 0}
    for r in reports:
        if r.has_critical_alerts:
            distribution["critical"] += 1
        elif r.kpis.spi < 0.95 or r.kpis.cpi < 0.95:
            distribution["at_risk"] += 1
        else:
            distribution["on_track"] += 1

    return {
        "schedules": len(reports),
        "averages": averages,
        "critical_issues": critical,
        "top_recommendations": top_recs,
        "distribution": distribution,
    }
