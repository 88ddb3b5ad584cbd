# sitecpm/event_handlers.py
import logging

from sitecpm.eventing import (
    PROGRESS_RECORDED,
    SCHEDULE_GENERATED,
    SCHEDULE_OPTIMIZED,
    WEATHER_ALERT,
    Event,
    event_manager,
)

logger = logging.getLogger(__name__)


def schedule_generated_handler(event: Event):
    payload = event.payload
    notifier = payload.get("notifier")
    schedule_id = payload.get("schedule_id")
    logger.info(
        "schedule %s generated with %s activities, %s on the critical path",
        schedule_id, payload.get("activity_count"), payload.get("critical_count"),
    )
    if notifier is not None and payload.get("recommendations"):
        notifier.send(
            "info",
            "Schedule generated",
            "; ".join(payload["recommendations"]),
            related_entity_id=schedule_id,
        )


def schedule_optimized_handler(event: Event):
    payload = event.payload
    logger.info(
        "schedule %s optimized: %s day(s) saved",
        payload.get("schedule_id"), payload.get("duration_reduction_days"),
    )


def progress_recorded_handler(event: Event):
    payload = event.payload
    notifier = payload.get("notifier")
    if notifier is None:
        return
    for alert in payload.get("alerts", []):
        notifier.send(
            alert.get("severity", "medium"),
            "Activity progress alert",
            alert.get("message", ""),
            related_entity_type="activity",
            related_entity_id=payload.get("activity_id"),
            metadata={"schedule_id": payload.get("schedule_id")},
        )


def weather_alert_handler(event: Event):
    payload = event.payload
    notifier = payload.get("notifier")
    if notifier is None:
        return
    notifier.send(
        payload.get("severity", "medium"),
        f"Weather alert: {payload.get('alert_type')}",
        payload.get("message", ""),
        related_entity_id=payload.get("schedule_id"),
        metadata={"date": payload.get("date"), "affected_activities": payload.get("affected_activity_ids", [])},
    )


def register_handlers(manager=event_manager):
    manager.add_listener(SCHEDULE_GENERATED, schedule_generated_handler)
    manager.add_listener(SCHEDULE_OPTIMIZED, schedule_optimized_handler)
    manager.add_listener(PROGRESS_RECORDED, progress_recorded_handler)
    manager.add_listener(WEATHER_ALERT, weather_alert_handler)


# Register the handlers
register_handlers()
