"""FastAPI dependencies for database access, actor identity and notifications."""

from typing import Generator
from uuid import UUID

from fastapi import BackgroundTasks, HTTPException, Request
from sqlalchemy.orm import Session

from queuedesk.db.session import SessionLocal
from queuedesk.services import notification_service
from queuedesk.services.notification_service import DeferredNotificationSink, NotificationSink


# Set by the operator UI / gateway after authentication.
ACTOR_HEADER = "X-Actor-Id"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor_id(request: Request) -> UUID | None:
    """Operator performing the action, when the caller identifies one."""
    value = request.headers.get(ACTOR_HEADER)
    if not value:
        return None
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {ACTOR_HEADER} header")


def get_notification_sink() -> NotificationSink:
    return notification_service.default_sink()


def get_notifier(background_tasks: BackgroundTasks) -> NotificationSink:
    """Notifications go out after the response is sent."""
    return DeferredNotificationSink(background_tasks, get_notification_sink())
