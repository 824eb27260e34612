"""Appointment store: reads and the queue projection writes."""

import logging
from collections.abc import Iterable
from typing import Any
from uuid import UUID

from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session

from queuedesk.db.enums import AppointmentStatus
from queuedesk.db.models import Appointment
from queuedesk.services.queue_errors import AppointmentNotFoundError
from queuedesk.services.queue_repository import storage_errors
from queuedesk.services.queue_state import estimate_wait_minutes

logger = logging.getLogger(__name__)

# Fields queue transitions are allowed to write.
PROJECTION_FIELDS = frozenset(
    {
        "status",
        "queue_position",
        "estimated_wait_minutes",
        "prioritized",
        "prioritized_at",
        "prioritized_by",
        "checked_in_at",
        "no_show_at",
        "completed_at",
        "cancelled_at",
        "cancelled_by",
        "cancellation_reason",
    }
)


def get_appointment(
    db: Session,
    appointment_id: UUID,
    org_id: UUID | None = None,
) -> Appointment | None:
    """Get an appointment, scoped to an organization when given."""
    query = select(Appointment).where(Appointment.id == appointment_id)
    if org_id is not None:
        query = query.where(Appointment.organization_id == org_id)
    with storage_errors("get appointment"):
        return db.execute(
            query.execution_options(populate_existing=True)
        ).scalar_one_or_none()


def require_appointment(
    db: Session,
    appointment_id: UUID,
    org_id: UUID | None = None,
) -> Appointment:
    appointment = get_appointment(db, appointment_id, org_id)
    if not appointment:
        raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
    return appointment


def get_prioritized_ids(db: Session, appointment_ids: Iterable[UUID]) -> set[UUID]:
    ids = list(appointment_ids)
    if not ids:
        return set()
    with storage_errors("get prioritized"):
        rows = db.execute(
            select(Appointment.id).where(
                and_(Appointment.id.in_(ids), Appointment.prioritized.is_(True))
            )
        ).scalars()
        return set(rows)


def update_appointment(
    db: Session,
    appointment_id: UUID,
    fields: dict[str, Any],
    expected_statuses: Iterable[AppointmentStatus] | None = None,
) -> bool:
    """
    Write projection fields onto an appointment.

    With expected_statuses, the write only applies while the appointment is
    still in one of them (compare-and-set on status). Returns False when
    the status moved on underneath us; raises if the appointment is gone.
    """
    unknown = set(fields) - PROJECTION_FIELDS
    if unknown:
        raise ValueError(f"Not a queue projection field: {', '.join(sorted(unknown))}")

    values = {
        key: value.value if isinstance(value, AppointmentStatus) else value
        for key, value in fields.items()
    }
    stmt = update(Appointment).where(Appointment.id == appointment_id)
    if expected_statuses is not None:
        stmt = stmt.where(Appointment.status.in_([status.value for status in expected_statuses]))

    with storage_errors("update appointment"):
        result = db.execute(stmt.values(**values).execution_options(synchronize_session=False))
        if result.rowcount:
            return True
        exists = db.execute(
            select(Appointment.id).where(Appointment.id == appointment_id)
        ).scalar_one_or_none()
    if exists is None:
        raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
    return False


def reposition_waiting(
    db: Session,
    active_tokens: Iterable[UUID],
    average_service_minutes: int,
) -> int:
    """
    Rewrite queue_position (1..n) and estimated wait for the waiting line.

    Only appointments still CHECKED_IN are touched, so a row cancelled
    behind the queue's back keeps its terminal state.
    """
    updated = 0
    with storage_errors("reposition"):
        for position, appointment_id in enumerate(active_tokens, start=1):
            result = db.execute(
                update(Appointment)
                .where(
                    and_(
                        Appointment.id == appointment_id,
                        Appointment.status == AppointmentStatus.CHECKED_IN.value,
                    )
                )
                .values(
                    queue_position=position,
                    estimated_wait_minutes=estimate_wait_minutes(position, average_service_minutes),
                )
                .execution_options(synchronize_session=False)
            )
            updated += result.rowcount
    return updated


def restore_status(
    db: Session,
    appointment_ids: Iterable[UUID],
    target: AppointmentStatus,
    from_statuses: Iterable[AppointmentStatus],
) -> int:
    """Move appointments still in from_statuses to target. Returns rows changed."""
    ids = list(appointment_ids)
    if not ids:
        return 0
    with storage_errors("restore status"):
        result = db.execute(
            update(Appointment)
            .where(
                and_(
                    Appointment.id.in_(ids),
                    Appointment.status.in_([status.value for status in from_statuses]),
                )
            )
            .values(status=target.value)
            .execution_options(synchronize_session=False)
        )
    return result.rowcount
