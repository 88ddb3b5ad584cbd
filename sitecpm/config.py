# sitecpm/config.py
import os
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

from sitecpm.models import ActivityType, Trade

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    db_url: Optional[str] = None
    weather_api_url: str = "https://api.openweathermap.org/data/2.5"
    weather_api_key: str = ""
    weather_request_delay: float = 1.0
    weather_timeout: float = 10.0
    weather_max_retries: int = 2
    forecast_days: int = 5

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_url=os.getenv("SITECPM_DB_URL") or None,
            weather_api_url=os.getenv("WEATHER_API_URL", cls.model_fields["weather_api_url"].default),
            weather_api_key=os.getenv("WEATHER_API_KEY", ""),
            weather_request_delay=float(os.getenv("WEATHER_REQUEST_DELAY", "1.0")),
            weather_timeout=float(os.getenv("WEATHER_TIMEOUT", "10")),
            weather_max_retries=int(os.getenv("WEATHER_MAX_RETRIES", "2")),
        )


KeywordTable = Tuple[Tuple[Tuple[str, ...], object], ...]

# First match wins, so more specific phrases come first.
ACTIVITY_KEYWORDS: KeywordTable = (
    (("excavación", "excavacion", "movimiento de tierra", "excavation", "earthwork"), ActivityType.EXCAVATION),
    (("fundación", "fundacion", "cimiento", "foundation", "footing"), ActivityType.FOUNDATION),
    (("estructura", "columnas", "vigas", "structure", "column", "beam"), ActivityType.STRUCTURE),
    (("mampostería", "mamposteria", "paredes", "muros", "masonry", "wall"), ActivityType.MASONRY),
    (("techo", "cubierta", "roof"), ActivityType.ROOFING),
    (("eléctric", "electric", "electricidad"), ActivityType.ELECTRICAL),
    (("plomería", "plomeria", "sanitario", "agua", "plumbing", "water"), ActivityType.PLUMBING),
    (("acabado", "pintura", "piso", "finishing", "paint", "floor"), ActivityType.FINISHING),
    (("limpieza", "cleanup", "cleaning"), ActivityType.CLEANUP),
)

TRADE_KEYWORDS: KeywordTable = (
    (("albañil", "albanil", "mampostería", "mamposteria", "mason"), Trade.MASONRY),
    (("eléctric", "electricista", "electric"), Trade.ELECTRICAL),
    (("plomero", "plomería", "plomeria", "plumb"), Trade.PLUMBING),
    (("carpintero", "madera", "carpent", "wood"), Trade.CARPENTRY),
    (("pintor", "pintura", "paint"), Trade.PAINTING),
    (("soldador", "hierro", "weld", "steel"), Trade.WELDING),
)


class DerivationConfig(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    activity_keywords: KeywordTable = ACTIVITY_KEYWORDS
    trade_keywords: KeywordTable = TRADE_KEYWORDS
    weather_keywords: Tuple[str, ...] = ("exterior", "pintura", "outdoor")
    height_keywords: Tuple[str, ...] = ("altura", "techo", "height", "roof")
    default_cost: float = 1000.0
    # days of work per 1000 of cost when no productivity data is known
    cost_duration_factor: float = 0.5
    daily_hours: float = 8
    working_days: Tuple[int, ...] = (1, 2, 3, 4, 5, 6)


ZONE_COORDINATES: Mapping[str, Tuple[float, float]] = MappingProxyType({
    "QUITO": (-0.1807, -78.4678),
    "GUAYAQUIL": (-2.1969, -79.8862),
    "CUENCA": (-2.9001, -79.0059),
    "COSTA": (-1.5, -80.0),
    "SIERRA": (-1.0, -78.5),
    "ORIENTE": (-1.5, -77.5),
    "INSULAR": (-0.75, -90.0),
})
DEFAULT_ZONE = "QUITO"

# zone -> (risk level, probability)
ZONE_WEATHER_RISK: Mapping[str, Tuple[str, float]] = MappingProxyType({
    "COSTA": ("high", 0.7),
    "SIERRA": ("medium", 0.5),
    "ORIENTE": ("high", 0.8),
})
DEFAULT_WEATHER_RISK = ("medium", 0.5)

INDUSTRY_BENCHMARKS: Mapping[str, float] = MappingProxyType({
    "spi": 0.95,
    "cpi": 1.0,
    "quality": 90.0,
    "productivity": 0.75,
    "safety": 95.0,
})

Z_SCORES: Mapping[float, float] = MappingProxyType({
    0.8: 1.28,
    0.9: 1.645,
    0.95: 1.96,
})


def zone_coordinates(zone: Optional[str]) -> Tuple[float, float]:
    return ZONE_COORDINATES.get((zone or "").upper(), ZONE_COORDINATES[DEFAULT_ZONE])
