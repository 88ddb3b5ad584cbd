# sitecpm/prediction.py
"""
Delay forecasting. The most likely delay comes from schedule performance and
quality, adjusted for weather and productivity signals; the spread around it
comes from how much activities have actually slipped so far.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, List, Mapping, Optional, Tuple

import numpy as np

from sitecpm.config import DEFAULT_WEATHER_RISK, ZONE_WEATHER_RISK, Z_SCORES
from sitecpm.errors import ScheduleValidationError
from sitecpm.models import Activity, ActivityStatus, ProgressReport, Schedule
from sitecpm.optimization import ScheduleOptimizer
from sitecpm.performance import KPIs, TrendSignals, calculate_kpis, planned_fraction, trend_signals
from sitecpm.scheduler import project_finish
from sitecpm.utils import add_days, days_between

logger = logging.getLogger(__name__)

RISK_CATEGORIES = ("productivity", "weather", "resources", "dependencies", "quality")

DEFAULT_STD_DAYS = 5.0
MIN_STD_DAYS = 1.0
WARNING_THRESHOLD = 0.6

MITIGATIONS = {
    "productivity": "Review crew sizes and work methods; add supervision on slow activities",
    "weather": "Plan weather buffers and sequence outdoor work for dry periods",
    "resources": "Secure alternative suppliers and subcontractors",
    "dependencies": "Review and tighten the sequence of critical activities",
    "quality": "Increase inspections to reduce rework",
}


@dataclass
class DelayBound:
    delay_days: float
    completion_date: date
    probability: float


@dataclass
class RiskFactor:
    category: str
    impact: str
    probability: float
    mitigation: str


@dataclass
class EarlyWarning:
    activity_id: Optional[str]
    subject: str
    message: str
    risk_score: float
    days_until_impact: int
    severity: str


@dataclass
class PredictionRecommendation:
    action: str
    priority: str
    estimated_impact: str


@dataclass
class Scenario:
    name: str
    delay_days: float
    probability: float
    description: str


@dataclass
class DelayPrediction:
    schedule_id: str
    as_of: date
    confidence: float
    kpis: KPIs
    standard_deviation: float
    most_likely: DelayBound
    optimistic: DelayBound
    pessimistic: DelayBound
    risk_factors: List[RiskFactor] = field(default_factory=list)
    warnings: List[EarlyWarning] = field(default_factory=list)
    recommendations: List[PredictionRecommendation] = field(default_factory=list)
    scenarios: List[Scenario] = field(default_factory=list)


def z_score(confidence: float) -> float:
    for level, z in Z_SCORES.items():
        if math.isclose(level, confidence):
            return z
    raise ScheduleValidationError(
        f"Unsupported confidence level {confidence}; expected one of {sorted(Z_SCORES)}"
    )


def slippage_samples(activities: Iterable[Activity]) -> List[int]:
    """Days by which activities finished (or started) later than planned."""
    samples = []
    for a in activities:
        if a.actual_end_date and a.planned_end_date:
            samples.append(days_between(a.planned_end_date, a.actual_end_date))
        elif a.actual_start_date and a.planned_start_date:
            samples.append(days_between(a.planned_start_date, a.actual_start_date))
    return samples


def delay_spread(samples: List[int], default: float = DEFAULT_STD_DAYS, floor: float = MIN_STD_DAYS) -> float:
    if len(samples) < 2:
        return default
    return max(floor, float(np.std(samples, ddof=1)))


def is_delayed(activity: Activity, as_of: date) -> bool:
    if activity.status == ActivityStatus.DELAYED:
        return True
    if activity.status == ActivityStatus.COMPLETED:
        return bool(activity.actual_end_date and activity.planned_end_date
                    and activity.actual_end_date > activity.planned_end_date)
    return bool(activity.planned_end_date and as_of > activity.planned_end_date)


def activity_risk(activity: Activity, as_of: date) -> float:
    risk = 0.0
    if is_delayed(activity, as_of):
        risk += 0.4
    if activity.is_critical_path:
        risk += 0.3
    if activity.completion_percentage < planned_fraction(activity, as_of) * 100:
        risk += 0.3
    return min(1.0, round(risk, 4))


class DelayPredictor:
    def __init__(
        self,
        zone_risk: Mapping[str, Tuple[str, float]] = ZONE_WEATHER_RISK,
        default_std: float = DEFAULT_STD_DAYS,
        min_std: float = MIN_STD_DAYS,
    ):
        self.zone_risk = zone_risk
        self.default_std = default_std
        self.min_std = min_std

    # -- delay estimate --

    def baseline_delay(self, kpis: KPIs) -> float:
        return max(0.0, (1 - kpis.spi) * 10 + (100 - kpis.quality_index) * 0.1)

    def risk_adjustment(self, weather_impact: Optional[float], trends: Optional[TrendSignals]) -> float:
        adjustment = 0.0
        if weather_impact is not None and weather_impact < 0.8:
            adjustment += 5
        if (
            trends is not None
            and trends.recent_productivity is not None
            and trends.prior_productivity
            and trends.recent_productivity < 0.8 * trends.prior_productivity
        ):
            adjustment += 3
        return adjustment

    # -- risk factors --

    def assess_risk(self, category: str, schedule: Schedule, activities: List[Activity], kpis: KPIs, as_of: date) -> RiskFactor:
        if category == "productivity":
            p = kpis.productivity_index
            impact, prob = ("high", 0.8) if p < 0.5 else ("medium", 0.6) if p < 0.7 else ("low", 0.3)
        elif category == "weather":
            impact, prob = self.zone_risk.get((schedule.geographic_zone or "").upper(), DEFAULT_WEATHER_RISK)
        elif category == "resources":
            conflicts = ScheduleOptimizer().detect_conflicts(activities)
            involved = {aid for c in conflicts for aid in c.activity_ids}
            ratio = len(involved) / len(activities) if activities else 0.0
            impact, prob = ("high", 0.9) if ratio > 0.3 else ("medium", 0.6) if ratio > 0.1 else ("low", 0.2)
        elif category == "dependencies":
            delayed = any(a.is_critical_path and is_delayed(a, as_of) for a in activities)
            impact, prob = ("high", 0.8) if delayed else ("low", 0.2)
        elif category == "quality":
            q = kpis.quality_index
            impact, prob = ("high", 0.7) if q < 70 else ("medium", 0.4) if q < 85 else ("low", 0.1)
        else:
            raise ScheduleValidationError(f"Unknown risk category: {category}", schedule_id=schedule.id)
        return RiskFactor(category=category, impact=impact, probability=prob, mitigation=MITIGATIONS[category])

    # -- warnings --

    def _days_until_impact(self, activity: Activity, as_of: date) -> int:
        if activity.is_critical_path or activity.planned_end_date is None:
            return 0
        deadline = add_days(activity.planned_end_date, max(0, activity.total_float))
        return max(0, days_between(as_of, deadline))

    def _days_until_critical(self, activities: List[Activity], as_of: date) -> int:
        upcoming = [
            days_between(as_of, a.planned_start_date)
            for a in activities
            if a.is_critical_path and not a.is_finished and a.planned_start_date and a.planned_start_date >= as_of
        ]
        return max(1, min(upcoming)) if upcoming else 1

    def early_warnings(self, activities: List[Activity], risks: List[RiskFactor], as_of: date) -> List[EarlyWarning]:
        warnings = []
        for act in activities:
            if act.status != ActivityStatus.IN_PROGRESS:
                continue
            score = activity_risk(act, as_of)
            if score <= WARNING_THRESHOLD:
                continue
            days = self._days_until_impact(act, as_of)
            warnings.append(EarlyWarning(
                activity_id=act.id,
                subject=act.name,
                message="Activity at risk of delay based on current progress",
                risk_score=score,
                days_until_impact=days,
                severity="high" if days < 7 else "medium" if days < 14 else "low",
            ))
        for risk in risks:
            if risk.impact != "high":
                continue
            warnings.append(EarlyWarning(
                activity_id=None,
                subject="project",
                message=f"High {risk.category} risk detected",
                risk_score=risk.probability,
                days_until_impact=self._days_until_critical(activities, as_of),
                severity="high",
            ))
        return warnings

    def recommendations(self, most_likely: float, risks: List[RiskFactor], warnings: List[EarlyWarning]) -> List[PredictionRecommendation]:
        recs = []
        if most_likely > 5:
            recs.append(PredictionRecommendation(
                action="Implement a schedule recovery plan",
                priority="high",
                estimated_impact=f"Reduce the delay by {math.ceil(most_likely * 0.3)} day(s)",
            ))
        for risk in risks:
            if risk.impact == "high":
                recs.append(PredictionRecommendation(
                    action=risk.mitigation,
                    priority="high",
                    estimated_impact=f"Lower the probability of {risk.category} delays",
                ))
        if any(w.severity == "high" for w in warnings):
            recs.append(PredictionRecommendation(
                action="Monitor critical activities more frequently",
                priority="medium",
                estimated_impact="Earlier detection of problems",
            ))
        return recs

    def scenarios(self, most_likely: float, risks: List[RiskFactor]) -> List[Scenario]:
        high = sum(1 for r in risks if r.impact == "high")
        result = [
            Scenario("base", most_likely, 0.4, "Current conditions continue"),
            Scenario("optimized", max(0.0, most_likely - 3), 0.3, "All recommendations are implemented"),
        ]
        if high:
            result.append(Scenario("risk", most_likely + 7 * high, 0.2, "The main risks materialize"))
        result.append(Scenario("extreme", most_likely + 21, 0.1, "Several problems occur at once"))
        return result

    # -- driver --

    def predict(
        self,
        schedule: Schedule,
        activities: List[Activity],
        reports: List[ProgressReport],
        as_of: date,
        confidence: float = 0.9,
        weather_impact: Optional[float] = None,
        risk_categories: Optional[Iterable[str]] = None,
        include_scenarios: bool = False,
        trends: Optional[TrendSignals] = None,
    ) -> DelayPrediction:
        z = z_score(confidence)
        categories = list(RISK_CATEGORIES if risk_categories is None else risk_categories)
        for category in categories:
            if category not in RISK_CATEGORIES:
                raise ScheduleValidationError(f"Unknown risk category: {category}", schedule_id=schedule.id)

        kpis = calculate_kpis(activities, reports, as_of)
        trends = trends if trends is not None else trend_signals(reports, as_of)
        most_likely = round(self.baseline_delay(kpis) + self.risk_adjustment(weather_impact, trends), 2)
        std = delay_spread(slippage_samples(activities), self.default_std, self.min_std)

        planned_end = schedule.planned_end_date or project_finish(activities) or as_of
        tail = round((1 - confidence) / 2, 4)

        def bound(delay: float, probability: float) -> DelayBound:
            delay = round(delay, 2)
            return DelayBound(delay, add_days(planned_end, math.ceil(delay)), probability)

        risks = [self.assess_risk(c, schedule, activities, kpis, as_of) for c in categories]
        warnings = self.early_warnings(activities, risks, as_of)

        prediction = DelayPrediction(
            schedule_id=schedule.id,
            as_of=as_of,
            confidence=confidence,
            kpis=kpis,
            standard_deviation=round(std, 4),
            most_likely=bound(most_likely, confidence),
            optimistic=bound(max(0.0, most_likely - z * std), tail),
            pessimistic=bound(most_likely + z * std, tail),
            risk_factors=risks,
            warnings=warnings,
            recommendations=self.recommendations(most_likely, risks, warnings),
            scenarios=self.scenarios(most_likely, risks) if include_scenarios else [],
        )
        logger.info(
            "delay prediction for schedule %s: %.1f days (%.1f-%.1f at %.0f%%)",
            schedule.id, most_likely, prediction.optimistic.delay_days, prediction.pessimistic.delay_days,
            confidence * 100,
        )
        return prediction
