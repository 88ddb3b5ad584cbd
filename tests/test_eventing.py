# tests/test_eventing.py
from sitecpm.eventing import SCHEDULE_GENERATED, Event, EventManager
from sitecpm.models import Notification, Schedule
from sitecpm.repositories import ScheduleRepository


def test_failing_listener_does_not_stop_the_others():
    manager = EventManager()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    manager.add_listener(SCHEDULE_GENERATED, broken)
    manager.add_listener(SCHEDULE_GENERATED, seen.append)
    manager.add_listener(SCHEDULE_GENERATED, seen.append)

    event = Event(SCHEDULE_GENERATED, {"schedule_id": "S1"})
    assert manager.emit(event) == 1
    assert seen == [event]
    assert event.schedule_id == "S1"


def test_emit_without_listeners():
    assert EventManager().emit(Event("unknown")) == 0


def test_timestamps_are_timezone_aware(engine, project_start):
    assert Event(SCHEDULE_GENERATED).occurred_at.tzinfo is not None
    assert Notification(severity="info", title="t", message="m").created_at.tzinfo is not None

    schedule = ScheduleRepository(engine).save(Schedule(id="S1", name="Casa", start_date=project_start))
    assert schedule.updated_at.tzinfo is not None
