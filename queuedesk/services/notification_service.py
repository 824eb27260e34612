"""
Notification Service - best-effort customer messages for queue events.

The queue engine talks to a NotificationSink. The default sink writes an
in-app Notification row in its own session, so a delivery failure can never
touch the queue transaction. Over HTTP the sink is wrapped in a deferred
sink that runs after the response via FastAPI background tasks.
"""

import logging
from typing import Any, Callable, Protocol
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from queuedesk.core.config import settings
from queuedesk.core.structured_logging import build_log_context
from queuedesk.db.enums import NotificationType
from queuedesk.db.models import Notification
from queuedesk.db.session import SessionLocal

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def notify(
        self,
        user_id: UUID,
        org_id: UUID,
        kind: NotificationType,
        payload: dict[str, Any],
    ) -> None: ...


NOTIFICATION_TEMPLATES: dict[NotificationType, tuple[str, str]] = {
    NotificationType.YOUR_TURN: (
        "It is your turn!",
        "Token {token_number} - Please proceed to the counter.",
    ),
    NotificationType.TURN_REMINDER: (
        "Turn Reminder",
        "You are next in line! Please be ready.",
    ),
    NotificationType.NO_SHOW: (
        "Missed Your Turn",
        "You were called but did not respond. Token {token_number} has been moved to the back of the line.",
    ),
    NotificationType.APPOINTMENT_CANCELLED: (
        "Appointment Cancelled",
        "Token {token_number} was removed from the queue: {reason}",
    ),
}


def render_notification(kind: NotificationType, payload: dict[str, Any]) -> tuple[str, str]:
    """Title and body for a notification kind."""
    title, body = NOTIFICATION_TEMPLATES[kind]
    return title, body.format(**payload)


# =============================================================================
# Notification CRUD
# =============================================================================


def create_notification(
    db: Session,
    org_id: UUID,
    user_id: UUID,
    type: NotificationType,
    title: str,
    body: str | None = None,
    data: dict[str, Any] | None = None,
) -> Notification:
    notification = Notification(
        organization_id=org_id,
        user_id=user_id,
        type=type.value,
        title=title,
        body=body,
        data=data or {},
    )
    db.add(notification)
    db.flush()
    return notification


# =============================================================================
# Sinks
# =============================================================================


class DatabaseNotificationSink:
    """Persists in-app notifications using a dedicated session."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def notify(
        self,
        user_id: UUID,
        org_id: UUID,
        kind: NotificationType,
        payload: dict[str, Any],
    ) -> None:
        title, body = render_notification(kind, payload)
        db = self.session_factory()
        try:
            create_notification(db, org_id, user_id, kind, title, body, payload)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class DeferredNotificationSink:
    """Queues delivery on FastAPI background tasks (runs after the response)."""

    def __init__(self, background_tasks: BackgroundTasks, sink: NotificationSink):
        self.background_tasks = background_tasks
        self.sink = sink

    def notify(
        self,
        user_id: UUID,
        org_id: UUID,
        kind: NotificationType,
        payload: dict[str, Any],
    ) -> None:
        self.background_tasks.add_task(deliver, self.sink, user_id, org_id, kind, payload)


def default_sink() -> NotificationSink:
    return DatabaseNotificationSink()


def deliver(
    sink: NotificationSink,
    user_id: UUID,
    org_id: UUID,
    kind: NotificationType,
    payload: dict[str, Any],
) -> bool:
    """
    Hand a notification to a sink. Never raises.

    Failures are logged and dropped: a queue transition has already
    committed by the time anything is delivered.
    """
    if not settings.NOTIFICATIONS_ENABLED:
        return False
    try:
        sink.notify(user_id, org_id, kind, payload)
        return True
    except Exception:
        logger.exception(
            "Notification delivery failed: %s",
            kind.value,
            extra=build_log_context(
                org_id=org_id,
                appointment_id=payload.get("appointment_id"),
                operation="notify",
            ),
        )
        return False
