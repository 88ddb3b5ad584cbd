# sitecpm/errors.py
from typing import List, Optional


class SchedulingError(Exception):
    """Base error for the scheduling engine. Carries whatever ids are known."""

    def __init__(
        self,
        message: str,
        schedule_id: Optional[str] = None,
        activity_id: Optional[str] = None,
        dependency_ids: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.schedule_id = schedule_id
        self.activity_id = activity_id
        self.dependency_ids = list(dependency_ids or [])

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "schedule_id": self.schedule_id,
            "activity_id": self.activity_id,
            "dependency_ids": self.dependency_ids,
        }


class NotFoundError(SchedulingError):
    pass


class ScheduleValidationError(SchedulingError):
    pass


class CycleDetectedError(SchedulingError):
    def __init__(self, cycle: List[str], schedule_id: Optional[str] = None):
        path = " -> ".join(cycle)
        super().__init__(
            f"Circular dependency detected: {path}",
            schedule_id=schedule_id,
            activity_id=cycle[0] if cycle else None,
            dependency_ids=cycle,
        )
        self.cycle = cycle


class ExternalServiceError(SchedulingError):
    def __init__(self, message: str, service: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.service = service


class ConstraintInfeasibleError(SchedulingError):
    pass
