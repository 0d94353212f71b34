"""Best-effort delivery of domain notifications.

The sink is an external collaborator (a message broker publisher in
production). Nothing it does may affect an outcome that is already committed.
"""

from abc import ABC, abstractmethod

import structlog
from django.conf import settings
from django.utils.module_loading import import_string

from events.domain.notifications import DomainNotification

logger = structlog.get_logger(__name__)


class NotificationSink(ABC):
    """Receives domain notifications. May raise; callers never see it."""

    @abstractmethod
    def send(self, notification: DomainNotification) -> None:
        ...


class LoggingNotificationSink(NotificationSink):
    """Writes each notification to the log. The default when no broker is wired."""

    def send(self, notification: DomainNotification) -> None:
        logger.info("notification_emitted", payload=notification.to_dict())


def get_default_sink() -> NotificationSink:
    return import_string(settings.NOTIFICATION_SINK)()


class Notifier:
    """Wraps a sink with catch-and-log semantics."""

    def __init__(self, sink: NotificationSink | None = None) -> None:
        self._sink = sink or get_default_sink()

    def notify(self, notification: DomainNotification) -> bool:
        """Hand ``notification`` to the sink; return whether it was accepted."""
        try:
            self._sink.send(notification)
        except Exception:
            logger.exception(
                "notification_failed",
                notification_type=notification.type.value,
                notification_id=str(notification.notification_id),
            )
            return False
        logger.debug(
            "notification_sent",
            notification_type=notification.type.value,
            notification_id=str(notification.notification_id),
        )
        return True
