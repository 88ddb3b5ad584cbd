# sitecpm/notifications.py
import logging
from typing import Optional

from sitecpm.models import Notification
from sitecpm.repositories import NotificationRepository

logger = logging.getLogger(__name__)

LOG_LEVELS = {
    "critical": logging.ERROR,
    "high": logging.WARNING,
    "medium": logging.INFO,
    "low": logging.INFO,
    "info": logging.INFO,
}


class NotificationService:
    """
    Fire-and-forget alert delivery. Notifications are stored in the
    notifications table; a delivery failure is logged and swallowed so the
    calling operation or batch job carries on.
    """

    def __init__(self, engine=None, repository: Optional[NotificationRepository] = None):
        if repository is None and engine is None:
            raise ValueError("NotificationService needs an engine or a repository")
        self.repository = repository or NotificationRepository(engine)

    def send(
        self,
        severity: str,
        title: str,
        message: str,
        related_entity_type: str = "schedule",
        related_entity_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Optional[Notification]:
        severity = severity.lower()
        notification = Notification(
            severity=severity,
            title=title,
            message=message,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
            metadata=metadata or {},
        )
        try:
            self.repository.save(notification)
        except Exception:
            logger.exception("failed to deliver notification '%s' for %s %s", title, related_entity_type, related_entity_id)
            return None
        logger.log(LOG_LEVELS.get(severity, logging.INFO), "[%s] %s: %s", severity, title, message)
        return notification
