# sitecpm/weather.py
"""
Environmental adjustment: scores daily forecasts for workability, derives
productivity multipliers for outdoor work, raises weather alerts and postpones
outdoor activities that overlap high-severity alerts.

The OpenWeatherMap client fetches the 5 day / 3 hour forecast and folds it into
one WeatherForecast per day.
"""
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Tuple

import requests

from sitecpm.errors import ExternalServiceError
from sitecpm.models import (
    Activity,
    ActivityType,
    Precipitation,
    Temperature,
    WeatherAdjustment,
    WeatherForecast,
    Wind,
)
from sitecpm.utils import add_days

logger = logging.getLogger(__name__)

EXCELLENT, GOOD, FAIR, POOR = "excellent", "good", "fair", "poor"

PRODUCTIVITY_FACTORS = {EXCELLENT: 1.0, GOOD: 0.9, FAIR: 0.7, POOR: 0.4}

OUTDOOR_TYPES = frozenset({
    ActivityType.EXCAVATION,
    ActivityType.FOUNDATION,
    ActivityType.STRUCTURE,
    ActivityType.ROOFING,
})

# alert type -> days of automatic postponement (high severity only)
POSTPONEMENT_DAYS = {"storm": 2, "wind": 1}

MIN_ACTIVITY_FACTOR = 0.1

COMPASS = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")


def workability_score(forecast: WeatherForecast) -> int:
    score = 100
    temp = forecast.temperature.avg
    if temp < 5 or temp > 35:
        score -= 30
    elif temp <= 10 or temp >= 30:
        score -= 15

    rain = forecast.precipitation.amount
    if rain > 10:
        score -= 50
    elif rain > 5:
        score -= 25
    elif rain > 1:
        score -= 10

    wind = forecast.wind.speed
    if wind > 50:
        score -= 40
    elif wind > 30:
        score -= 20
    elif wind > 20:
        score -= 10

    if forecast.humidity > 90:
        score -= 10
    return max(0, score)


def classify_workability(score: float) -> str:
    if score >= 85:
        return EXCELLENT
    if score >= 70:
        return GOOD
    if score >= 50:
        return FAIR
    return POOR


def assess_workability(forecast: WeatherForecast) -> str:
    return classify_workability(workability_score(forecast))


def productivity_factor(category: str) -> float:
    return PRODUCTIVITY_FACTORS.get(category, PRODUCTIVITY_FACTORS[FAIR])


def is_outdoor(activity: Activity) -> bool:
    if activity.activity_type in OUTDOOR_TYPES:
        return True
    if not activity.environment.indoor:
        return True
    text = f"{activity.name} {activity.description}".lower()
    return "exterior" in text


def activity_weather_factor(activity: Activity, forecast: WeatherForecast) -> float:
    """Productivity multiplier for one activity on one day."""
    factor = productivity_factor(forecast.workability or assess_workability(forecast))
    if not is_outdoor(activity):
        return factor

    rain = forecast.precipitation.amount
    wind = forecast.wind.speed
    kind = activity.activity_type
    if kind == ActivityType.EXCAVATION and rain > 5:
        factor *= 0.5
    elif kind == ActivityType.FOUNDATION and rain > 2:
        factor *= 0.6
    elif kind == ActivityType.STRUCTURE and wind > 30:
        factor *= 0.7
    elif kind == ActivityType.ROOFING and (wind > 20 or rain > 0):
        factor *= 0.3
    return max(MIN_ACTIVITY_FACTOR, round(factor, 4))


def impact_level(factor: float) -> str:
    if factor >= 0.9:
        return "minimal"
    if factor >= 0.7:
        return "moderate"
    if factor >= 0.4:
        return "severe"
    return "prohibitive"


@dataclass
class WeatherAlert:
    day: date
    alert_type: str
    severity: str
    message: str
    affected_activity_ids: List[str] = field(default_factory=list)


def detect_alerts(forecasts: List[WeatherForecast]) -> List[WeatherAlert]:
    alerts = []
    for fc in forecasts:
        rain = fc.precipitation.amount
        if rain > 20:
            alerts.append(WeatherAlert(fc.date, "storm", "high", f"Storm expected: {rain:.1f} mm of rain"))
        elif rain > 10:
            alerts.append(WeatherAlert(fc.date, "rain", "medium", f"Heavy rain expected: {rain:.1f} mm"))
        if fc.wind.speed > 40:
            alerts.append(WeatherAlert(fc.date, "wind", "high", f"High wind expected: {fc.wind.speed:.0f} km/h"))
        temp = fc.temperature.avg
        if temp < 2 or temp > 38:
            alerts.append(WeatherAlert(fc.date, "temperature", "medium", f"Extreme temperature: {temp:.1f} C"))
    return alerts


def is_adverse(forecast: WeatherForecast) -> bool:
    category = forecast.workability or assess_workability(forecast)
    return category == POOR or forecast.precipitation.amount > 10 or forecast.wind.speed > 40


def _overlaps(activity: Activity, day: date) -> bool:
    if activity.planned_start_date is None or activity.planned_end_date is None:
        return False
    return activity.planned_start_date <= day < activity.planned_end_date


def apply_postponements(activities: List[Activity], alerts: List[WeatherAlert]) -> Dict[str, int]:
    """
    Shifts unfinished outdoor activities that overlap a high-severity alert.
    Each activity moves once per call, by the largest postponement among the
    alerts it overlaps. Returns {activity_id: days}.
    """
    shifts: Dict[str, Tuple[int, WeatherAlert]] = {}
    for alert in alerts:
        if alert.severity != "high":
            continue
        days = POSTPONEMENT_DAYS.get(alert.alert_type, 0)
        if not days:
            continue
        for act in activities:
            if act.is_finished or not is_outdoor(act) or not _overlaps(act, alert.day):
                continue
            if act.id not in alert.affected_activity_ids:
                alert.affected_activity_ids.append(act.id)
            if days > shifts.get(act.id, (0, None))[0]:
                shifts[act.id] = (days, alert)

    by_id = {a.id: a for a in activities}
    for aid, (days, alert) in shifts.items():
        act = by_id[aid]
        original = act.planned_start_date
        act.planned_start_date = add_days(original, days)
        act.planned_end_date = add_days(act.planned_end_date, days)
        act.custom_fields.weather_adjustments.append(
            WeatherAdjustment(applied_on=alert.day, reason=alert.alert_type, delay_days=days, original_start=original)
        )
        logger.info("postponed activity %s by %d day(s) for %s on %s", aid, days, alert.alert_type, alert.day)
    return {aid: days for aid, (days, _) in shifts.items()}


@dataclass
class ActivityImpact:
    activity_id: str
    factor: float
    impact: str


@dataclass
class DailyWeatherImpact:
    day: date
    score: int
    workability: str
    productivity_factor: float
    adverse: bool
    activity_impacts: List[ActivityImpact] = field(default_factory=list)


def assess_schedule(activities: List[Activity], forecasts: List[WeatherForecast]) -> List[DailyWeatherImpact]:
    """Per-day workability and the factor for every outdoor activity active that day."""
    days = []
    for fc in forecasts:
        score = workability_score(fc)
        category = classify_workability(score)
        fc.workability = category
        impacts = []
        for act in activities:
            if act.is_finished or not is_outdoor(act) or not _overlaps(act, fc.date):
                continue
            factor = activity_weather_factor(act, fc)
            impacts.append(ActivityImpact(act.id, factor, impact_level(factor)))
        days.append(DailyWeatherImpact(
            day=fc.date,
            score=score,
            workability=category,
            productivity_factor=productivity_factor(category),
            adverse=is_adverse(fc),
            activity_impacts=impacts,
        ))
    return days


# --- provider ---

def _direction(degrees: Optional[float]) -> str:
    if degrees is None:
        return "N"
    return COMPASS[int(round(degrees / 45.0)) % 8]


def parse_forecast_payload(payload: dict) -> List[WeatherForecast]:
    """Folds OpenWeatherMap 3-hourly items into daily forecasts, in date order."""
    grouped: "OrderedDict[date, list]" = OrderedDict()
    for item in payload.get("list", []):
        if "dt_txt" in item:
            day = datetime.strptime(item["dt_txt"], "%Y-%m-%d %H:%M:%S").date()
        else:
            day = datetime.fromtimestamp(item["dt"], tz=timezone.utc).date()
        grouped.setdefault(day, []).append(item)

    forecasts = []
    for day, items in grouped.items():
        temps = [i["main"]["temp"] for i in items]
        lows = [i["main"].get("temp_min", i["main"]["temp"]) for i in items]
        highs = [i["main"].get("temp_max", i["main"]["temp"]) for i in items]
        rains = [i.get("rain", {}).get("3h", 0.0) for i in items]
        winds = [i.get("wind", {}).get("speed", 0.0) * 3.6 for i in items]
        humidity = [i["main"].get("humidity", 0) for i in items]
        conditions = []
        for i in items:
            for w in i.get("weather", []):
                desc = w.get("description")
                if desc and desc not in conditions:
                    conditions.append(desc)
        fc = WeatherForecast(
            date=day,
            temperature=Temperature(min=min(lows), max=max(highs), avg=round(sum(temps) / len(temps), 2)),
            precipitation=Precipitation(
                probability=round(sum(1 for r in rains if r > 0) / len(rains), 2),
                amount=round(sum(rains), 2),
            ),
            wind=Wind(
                speed=round(sum(winds) / len(winds), 1),
                direction=_direction(items[len(items) // 2].get("wind", {}).get("deg")),
            ),
            humidity=round(sum(humidity) / len(humidity), 1),
            conditions=conditions,
        )
        fc.workability = assess_workability(fc)
        forecasts.append(fc)
    return forecasts


class WeatherProvider:
    """Source of daily forecasts for a coordinate pair."""

    def forecast(self, latitude: float, longitude: float) -> List[WeatherForecast]:
        raise NotImplementedError


class OpenWeatherMapProvider(WeatherProvider):
    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openweathermap.org/data/2.5",
        timeout: float = 10.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.session = session or requests.Session()

    def forecast(self, latitude: float, longitude: float) -> List[WeatherForecast]:
        url = f"{self.base_url}/forecast"
        params = {"lat": latitude, "lon": longitude, "appid": self.api_key, "units": "metric", "cnt": 40}
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                response = self.session.get(url, params=params, timeout=self.timeout)
                response.raise_for_status()
                payload = response.json()
            except requests.Timeout:
                logger.warning(
                    "weather request for %s,%s timed out (attempt %d/%d)", latitude, longitude, attempt, attempts
                )
                if attempt < attempts:
                    time.sleep(self.retry_delay)
                continue
            except (requests.RequestException, ValueError) as exc:
                raise ExternalServiceError(
                    f"Weather request for {latitude},{longitude} failed: {exc}", service="openweathermap"
                ) from exc
            try:
                return parse_forecast_payload(payload)
            except (KeyError, TypeError, ValueError) as exc:
                raise ExternalServiceError(
                    f"Malformed weather payload for {latitude},{longitude}: {exc!r}", service="openweathermap"
                ) from exc
        raise ExternalServiceError(
            f"Weather request for {latitude},{longitude} timed out after {attempts} attempts",
            service="openweathermap",
        )
