# sitecpm/models.py

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from sitecpm.utils import utc_now


def new_id() -> str:
    return uuid4().hex


class ActivityType(str, Enum):
    EXCAVATION = "excavation"
    FOUNDATION = "foundation"
    STRUCTURE = "structure"
    MASONRY = "masonry"
    ROOFING = "roofing"
    ELECTRICAL = "electrical"
    PLUMBING = "plumbing"
    FINISHING = "finishing"
    CLEANUP = "cleanup"
    PREPARATION = "preparation"
    INSPECTION = "inspection"
    DELIVERY = "delivery"
    APPROVAL = "approval"
    MILESTONE = "milestone"
    BUFFER = "buffer"
    OTHER = "other"


class ActivityStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DELAYED = "delayed"
    REWORK_REQUIRED = "rework_required"


class ActivityPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class Trade(str, Enum):
    GENERAL = "general"
    MASONRY = "masonry"
    ELECTRICAL = "electrical"
    PLUMBING = "plumbing"
    CARPENTRY = "carpentry"
    PAINTING = "painting"
    WELDING = "welding"


class RelationType(str, Enum):
    FS = "FS"
    SS = "SS"
    FF = "FF"
    SF = "SF"


class ScheduleStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class OptimizationGoal(str, Enum):
    MINIMIZE_DURATION = "minimize_duration"
    MINIMIZE_COST = "minimize_cost"
    MAXIMIZE_RESOURCE_UTILIZATION = "maximize_resource_utilization"
    MINIMIZE_RISK = "minimize_risk"


# --- activity sub-records ---

class Dependency(BaseModel):
    activity_id: str
    relation_type: RelationType = RelationType.FS
    lag_days: int = 0


class WorkforceRequirement(BaseModel):
    trade: Trade = Trade.GENERAL
    quantity: int = Field(1, ge=0)
    skill_level: str = "intermediate"
    hourly_rate: float = 0.0


class EquipmentRequirement(BaseModel):
    equipment_type: str
    quantity: int = 1
    daily_cost: float = 0.0


class MaterialRequirement(BaseModel):
    name: str
    quantity: float = 0.0
    unit: str = "u"
    unit_cost: float = 0.0


class ResourceRequirements(BaseModel):
    workforce: List[WorkforceRequirement] = Field(default_factory=list)
    equipment: List[EquipmentRequirement] = Field(default_factory=list)
    materials: List[MaterialRequirement] = Field(default_factory=list)


class EnvironmentalFactors(BaseModel):
    weather_sensitive: bool = False
    indoor: bool = True
    height_work: bool = False
    noise_sensitive: bool = False
    dust_sensitive: bool = False


class WorkConfiguration(BaseModel):
    daily_hours: float = 8
    working_days: List[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5, 6])


class WorkQuantities(BaseModel):
    unit: str = "u"
    planned_quantity: float = 0.0
    completed_quantity: float = 0.0


class WeatherAdjustment(BaseModel):
    applied_on: date
    reason: str
    delay_days: int
    original_start: date


class ActivityCustomFields(BaseModel):
    source_line_item_id: Optional[str] = None
    from_budget: bool = False
    from_template: bool = False
    custom: bool = False
    template_activity_id: Optional[str] = None
    weather_adjustments: List[WeatherAdjustment] = Field(default_factory=list)


class Activity(BaseModel):
    id: str = Field(default_factory=new_id)
    schedule_id: Optional[str] = None
    name: str
    description: str = ""
    activity_type: ActivityType = ActivityType.OTHER
    priority: ActivityPriority = ActivityPriority.NORMAL
    primary_trade: Trade = Trade.GENERAL

    planned_start_date: Optional[date] = None
    planned_end_date: Optional[date] = None
    planned_duration: int = Field(1, ge=1)
    actual_start_date: Optional[date] = None
    actual_end_date: Optional[date] = None
    actual_duration: Optional[int] = None

    early_start_date: Optional[date] = None
    early_finish_date: Optional[date] = None
    late_start_date: Optional[date] = None
    late_finish_date: Optional[date] = None
    total_float: int = 0
    free_float: int = 0
    is_critical_path: bool = False

    planned_labor_cost: float = 0.0
    planned_material_cost: float = 0.0
    planned_equipment_cost: float = 0.0
    planned_total_cost: float = 0.0
    actual_labor_cost: float = 0.0
    actual_material_cost: float = 0.0
    actual_equipment_cost: float = 0.0
    actual_total_cost: float = 0.0

    completion_percentage: float = Field(0.0, ge=0, le=100)
    status: ActivityStatus = ActivityStatus.NOT_STARTED

    predecessors: List[Dependency] = Field(default_factory=list)
    successors: List[Dependency] = Field(default_factory=list)
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    environment: EnvironmentalFactors = Field(default_factory=EnvironmentalFactors)
    work_configuration: WorkConfiguration = Field(default_factory=WorkConfiguration)
    work_quantities: Optional[WorkQuantities] = None
    custom_fields: ActivityCustomFields = Field(default_factory=ActivityCustomFields)

    @property
    def workforce_trades(self) -> List[Trade]:
        return [w.trade for w in self.resources.workforce]

    @property
    def is_finished(self) -> bool:
        return self.status in (ActivityStatus.COMPLETED, ActivityStatus.CANCELLED)


# --- schedule ---

class ClimateFactors(BaseModel):
    rainy_season_impact: float = 0
    temperature_min: float = 15
    temperature_max: float = 30
    humidity_impact: float = 5
    altitude_adjustment: float = 0


class LaborFactors(BaseModel):
    standard_work_hours: float = 8
    overtime_multiplier: float = 1.5
    weekend_multiplier: float = 2.0
    holidays: List[date] = Field(default_factory=list)
    productivity_factors: Dict[str, float] = Field(default_factory=dict)


class ResourceConstraints(BaseModel):
    max_concurrent_activities: int = 5
    critical_resource_limits: Dict[str, int] = Field(default_factory=dict)
    buffer_time_percentage: float = 0


class AlertSettings(BaseModel):
    delay_threshold_days: int = 2
    critical_path_monitoring: bool = True
    resource_conflict_alerts: bool = True
    weather_impact_alerts: bool = False
    budget_variance_alerts: bool = True


class OptimizationConstraints(BaseModel):
    max_duration: Optional[int] = None
    max_budget: Optional[float] = None
    fixed_activities: List[str] = Field(default_factory=list)


class Schedule(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    budget_id: Optional[str] = None
    construction_type: str = "residential"
    geographic_zone: str = "QUITO"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    start_date: date
    planned_end_date: Optional[date] = None
    actual_start_date: Optional[date] = None
    actual_end_date: Optional[date] = None
    total_planned_duration: int = 0
    total_actual_duration: Optional[int] = None
    total_planned_cost: float = 0.0
    total_actual_cost: float = 0.0
    critical_path: List[str] = Field(default_factory=list)
    climate_factors: ClimateFactors = Field(default_factory=ClimateFactors)
    labor_factors: LaborFactors = Field(default_factory=LaborFactors)
    resource_constraints: ResourceConstraints = Field(default_factory=ResourceConstraints)
    alert_settings: AlertSettings = Field(default_factory=AlertSettings)
    optimization_goals: List[OptimizationGoal] = Field(default_factory=list)
    optimization_constraints: Optional[OptimizationConstraints] = None
    is_optimized: bool = False
    status: ScheduleStatus = ScheduleStatus.DRAFT
    base_template_id: Optional[str] = None
    version: int = 0
    updated_at: Optional[datetime] = None


# --- budget / calculation inputs ---

class BudgetLineItem(BaseModel):
    id: str = Field(default_factory=new_id)
    description: str
    category: str = ""
    quantity: float = 0.0
    unit: str = "u"
    unit_price: float = 0.0
    subtotal: Optional[float] = None


class Budget(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    construction_type: str = "residential"
    geographic_zone: str = "QUITO"
    line_items: List[BudgetLineItem] = Field(default_factory=list)


class CalculationMaterial(BaseModel):
    name: str
    quantity: float
    unit: str = "u"
    unit_cost: float = 0.0


class CalculationResult(BaseModel):
    """A technical calculation (quantities of material for a work item)."""
    id: str = Field(default_factory=new_id)
    name: str
    construction_type: str = "residential"
    geographic_zone: str = "QUITO"
    materials: List[CalculationMaterial] = Field(default_factory=list)

    def to_line_items(self) -> List[BudgetLineItem]:
        return [
            BudgetLineItem(
                id=f"{self.id}:{i}",
                description=f"{self.name} - {m.name}",
                category="materials",
                quantity=m.quantity,
                unit=m.unit,
                unit_price=m.unit_cost,
                subtotal=m.quantity * m.unit_cost,
            )
            for i, m in enumerate(self.materials)
        ]


# --- templates ---

class TradeProductivity(BaseModel):
    min_workers: int = Field(1, ge=1)
    max_workers: int = 1
    hourly_rate: float = 0.0
    daily_hours: float = 8
    # units of work per worker per day
    productivity: float = Field(0.0, ge=0)


class TemplateActivity(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    activity_type: ActivityType = ActivityType.OTHER
    primary_trade: Trade = Trade.GENERAL
    duration_days: int = Field(1, ge=1)
    planned_cost: float = 0.0
    # names or ids of other template activities
    predecessors: List[str] = Field(default_factory=list)
    weather_sensitive: bool = False
    indoor: bool = True


class ScheduleTemplate(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    construction_type: str = "residential"
    geographic_zone: str = "QUITO"
    scope: str = "system"
    is_verified: bool = True
    estimated_duration_days: int = 0
    phase_configuration: Dict[str, float] = Field(default_factory=dict)
    workforce: Dict[Trade, TradeProductivity] = Field(default_factory=dict)
    buffer_percentage: float = 0.0
    standard_activities: List[TemplateActivity] = Field(default_factory=list)


class CustomActivity(BaseModel):
    name: str
    duration_days: int = Field(1, ge=1)
    activity_type: ActivityType = ActivityType.OTHER
    primary_trade: Trade = Trade.GENERAL
    predecessors: List[str] = Field(default_factory=list)
    planned_cost: float = 0.0


# --- weather ---

class Temperature(BaseModel):
    min: float
    max: float
    avg: float


class Precipitation(BaseModel):
    probability: float = 0.0
    amount: float = 0.0


class Wind(BaseModel):
    speed: float = 0.0
    direction: str = "N"


class WeatherForecast(BaseModel):
    date: date
    temperature: Temperature
    precipitation: Precipitation = Field(default_factory=Precipitation)
    wind: Wind = Field(default_factory=Wind)
    humidity: float = 50.0
    conditions: List[str] = Field(default_factory=list)
    workability: Optional[str] = None


# --- progress / notifications ---

class ProgressReport(BaseModel):
    id: str = Field(default_factory=new_id)
    schedule_id: str
    activity_id: str
    report_date: date
    progress_percentage: float = Field(ge=0, le=100)
    workers_present: int = 0
    hours_worked: float = 0.0
    productivity_rate: Optional[float] = None
    quality_score: Optional[float] = None
    safety_score: Optional[float] = None
    weather_workability: Optional[float] = None
    quality_issues: int = 0
    actual_cost: float = 0.0
    notes: str = ""


class Notification(BaseModel):
    id: str = Field(default_factory=new_id)
    severity: str = "info"
    title: str
    message: str
    related_entity_type: str = "schedule"
    related_entity_id: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
