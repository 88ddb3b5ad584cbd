# sitecpm/derivation.py
import logging
import math
from typing import Dict, List, Optional

from sitecpm.config import DerivationConfig
from sitecpm.errors import ScheduleValidationError
from sitecpm.models import (
    Activity,
    ActivityCustomFields,
    ActivityType,
    BudgetLineItem,
    CustomActivity,
    Dependency,
    EnvironmentalFactors,
    ResourceRequirements,
    ScheduleTemplate,
    Trade,
    WorkConfiguration,
    WorkforceRequirement,
    WorkQuantities,
)
from sitecpm.scheduler import link_successors

logger = logging.getLogger(__name__)


class ScheduleDeriver:
    """
    Builds the initial activity set of a schedule from budget line items, a
    template's standard activities and user supplied custom activities.
    Dates are not assigned here; that is the scheduler's job.
    """

    def __init__(self, config: Optional[DerivationConfig] = None):
        self.config = config or DerivationConfig()

    # -- classification --

    def _match(self, text: str, table, default):
        lowered = (text or "").lower()
        for tokens, value in table:
            if any(tok in lowered for tok in tokens):
                return value
        return default

    def classify_activity_type(self, description: str) -> ActivityType:
        return self._match(description, self.config.activity_keywords, ActivityType.OTHER)

    def classify_trade(self, description: str) -> Trade:
        return self._match(description, self.config.trade_keywords, Trade.GENERAL)

    def environment_for(self, description: str) -> EnvironmentalFactors:
        lowered = (description or "").lower()
        return EnvironmentalFactors(
            weather_sensitive=any(k in lowered for k in self.config.weather_keywords),
            indoor="exterior" not in lowered and "outdoor" not in lowered,
            height_work=any(k in lowered for k in self.config.height_keywords),
        )

    def _work_configuration(self) -> WorkConfiguration:
        return WorkConfiguration(
            daily_hours=self.config.daily_hours,
            working_days=list(self.config.working_days),
        )

    # -- durations --

    def line_item_cost(self, item: BudgetLineItem) -> float:
        if item.subtotal is not None:
            return item.subtotal
        if item.quantity and item.unit_price:
            return item.quantity * item.unit_price
        return self.config.default_cost

    def estimate_duration(self, item: BudgetLineItem, trade: Trade, template: Optional[ScheduleTemplate]) -> int:
        productivity = template.workforce.get(trade) if template else None
        if productivity and productivity.productivity > 0 and item.quantity > 0:
            days = item.quantity / (productivity.productivity * productivity.min_workers)
            return max(1, math.ceil(days))
        cost = self.line_item_cost(item)
        return max(1, math.ceil(cost / 1000 * self.config.cost_duration_factor))

    # -- builders --

    def activity_from_line_item(
        self,
        item: BudgetLineItem,
        template: Optional[ScheduleTemplate] = None,
        schedule_id: Optional[str] = None,
    ) -> Activity:
        activity_type = self.classify_activity_type(item.description)
        trade = self.classify_trade(item.description)
        cost = self.line_item_cost(item)

        resources = ResourceRequirements()
        productivity = template.workforce.get(trade) if template else None
        if productivity:
            resources.workforce.append(
                WorkforceRequirement(
                    trade=trade,
                    quantity=productivity.min_workers,
                    hourly_rate=productivity.hourly_rate,
                )
            )

        category = (item.category or "").lower()
        labor = equipment = material = 0.0
        if "labor" in category or "mano de obra" in category:
            labor = cost
        elif "equip" in category:
            equipment = cost
        else:
            material = cost

        return Activity(
            schedule_id=schedule_id,
            name=item.description,
            description=item.description,
            activity_type=activity_type,
            primary_trade=trade,
            planned_duration=self.estimate_duration(item, trade, template),
            planned_labor_cost=labor,
            planned_material_cost=material,
            planned_equipment_cost=equipment,
            planned_total_cost=cost,
            resources=resources,
            environment=self.environment_for(item.description),
            work_configuration=self._work_configuration(),
            work_quantities=WorkQuantities(unit=item.unit, planned_quantity=item.quantity),
            custom_fields=ActivityCustomFields(source_line_item_id=item.id, from_budget=True),
        )

    def _represented_by(self, name: str, activities: List[Activity]) -> Optional[Activity]:
        wanted = name.strip().lower()
        if not wanted:
            return None
        for act in activities:
            existing = act.name.strip().lower()
            # blank names would match everything
            if existing and (wanted in existing or existing in wanted):
                return act
        return None

    def template_activities(
        self,
        template: ScheduleTemplate,
        existing: List[Activity],
        schedule_id: Optional[str] = None,
        aliases: Optional[Dict[str, str]] = None,
    ) -> List[Activity]:
        """
        Standard activities not already covered by the budget. A covered step
        is recorded in aliases so links naming it point at the covering activity.
        """
        padding = 1 + template.buffer_percentage / 100
        added = []
        for ta in template.standard_activities:
            covering = self._represented_by(ta.name, existing + added)
            if covering is not None:
                if aliases is not None:
                    aliases.setdefault(ta.id, covering.id)
                    aliases.setdefault(ta.name.lower(), covering.id)
                continue
            productivity = template.workforce.get(ta.primary_trade)
            workforce = []
            if productivity:
                workforce.append(
                    WorkforceRequirement(
                        trade=ta.primary_trade,
                        quantity=productivity.min_workers,
                        hourly_rate=productivity.hourly_rate,
                    )
                )
            added.append(Activity(
                schedule_id=schedule_id,
                name=ta.name,
                description=ta.name,
                activity_type=ta.activity_type,
                primary_trade=ta.primary_trade,
                planned_duration=max(1, math.ceil(round(ta.duration_days * padding, 6))),
                planned_total_cost=ta.planned_cost,
                resources=ResourceRequirements(workforce=workforce),
                environment=EnvironmentalFactors(
                    weather_sensitive=ta.weather_sensitive, indoor=ta.indoor
                ),
                work_configuration=self._work_configuration(),
                predecessors=[Dependency(activity_id=ref) for ref in ta.predecessors],
                custom_fields=ActivityCustomFields(from_template=True, template_activity_id=ta.id),
            ))
        return added

    def custom_activities(self, customs: List[CustomActivity], schedule_id: Optional[str] = None) -> List[Activity]:
        return [
            Activity(
                schedule_id=schedule_id,
                name=c.name,
                description=c.name,
                activity_type=c.activity_type,
                primary_trade=c.primary_trade,
                planned_duration=c.duration_days,
                planned_total_cost=c.planned_cost,
                work_configuration=self._work_configuration(),
                predecessors=[Dependency(activity_id=ref) for ref in c.predecessors],
                custom_fields=ActivityCustomFields(custom=True),
            )
            for c in customs
        ]

    def _resolve_references(self, activities: List[Activity], aliases: Optional[Dict[str, str]] = None) -> None:
        """
        Template and custom predecessors may name activities instead of using
        ids. Rewrites them to activity ids; unknown references are kept as-is
        and ignored by the scheduler as dangling.
        """
        lookup: Dict[str, str] = dict(aliases or {})
        for act in activities:
            lookup.setdefault(act.name.lower(), act.id)
            if act.custom_fields.template_activity_id:
                lookup.setdefault(act.custom_fields.template_activity_id, act.id)
        ids = {a.id for a in activities}
        for act in activities:
            resolved = []
            for dep in act.predecessors:
                ref = dep.activity_id
                if ref not in ids:
                    ref = lookup.get(ref, lookup.get(ref.lower(), ref))
                resolved.append(dep.model_copy(update={"activity_id": ref}))
            act.predecessors = resolved

    def derive(
        self,
        line_items: List[BudgetLineItem],
        template: Optional[ScheduleTemplate] = None,
        custom: Optional[List[CustomActivity]] = None,
        schedule_id: Optional[str] = None,
    ) -> List[Activity]:
        activities = [self.activity_from_line_item(item, template, schedule_id) for item in line_items]
        aliases: Dict[str, str] = {}
        if template is not None:
            activities.extend(self.template_activities(template, activities, schedule_id, aliases))
        activities.extend(self.custom_activities(custom or [], schedule_id))

        if not activities:
            raise ScheduleValidationError(
                "Schedule has no activities: budget has no line items and nothing else was supplied",
                schedule_id=schedule_id,
            )
        self._resolve_references(activities, aliases)
        link_successors(activities)
        logger.info(
            "derived %d activities (%d from budget) for schedule %s",
            len(activities), len(line_items), schedule_id,
        )
        return activities
