"""
Queue engine: check-in, call-next, completion, no-show, priority and skip.

Every operation is a read-modify-write of one Queue row, guarded by the
row's version and retried from a fresh read when another writer wins.
Writes are ordered:

1. Queue (compare-and-swap, commit) - the source of truth for order. The
   customer no-show counter rides in the same transaction.
2. Appointment projection (status, positions, waits) - own transaction,
   retried on transient failure. If it still fails, ProjectionLagError
   tells the caller the operation happened; reconcile_positions repairs it.
3. Notifications - best effort, never fail the operation.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, TypedDict
from uuid import UUID

from sqlalchemy.orm import Session

from queuedesk.core.config import settings
from queuedesk.core.structured_logging import build_log_context
from queuedesk.db.enums import DEFAULT_SKIP_REASON, AppointmentStatus, NotificationType
from queuedesk.db.models import Appointment
from queuedesk.services import (
    appointment_store,
    customer_store,
    notification_service,
    queue_repository,
)
from queuedesk.services.notification_service import NotificationSink
from queuedesk.services.queue_errors import (
    ConcurrentModificationError,
    InvalidTransitionError,
    ProjectionLagError,
    QueueKeyMismatchError,
    QueueNotFoundError,
    StorageUnavailableError,
)
from queuedesk.services.queue_state import QueueSnapshot, Token, estimate_wait_minutes

logger = logging.getLogger(__name__)

# A CHECKED_IN appointment outside the line was pre-marked by a scanner.
CHECK_IN_STATUSES = frozenset({AppointmentStatus.BOOKED, AppointmentStatus.CHECKED_IN})


class CheckInResult(TypedDict):
    """Result of a check-in."""

    queue_id: UUID
    position: int


class CallNextResult(TypedDict):
    """Result of calling the next token."""

    queue_id: UUID
    appointment_id: UUID
    next_in_line: UUID | None


class QueueStatus(TypedDict):
    """Counters shown on operator and monitor screens."""

    queue_id: UUID
    is_active: bool
    active_count: int
    current_token: UUID | None
    completed_count: int
    no_show_count: int
    total_served: int
    estimated_wait_minutes: int  # For someone joining the back of the line now


@dataclass
class _Transition:
    """A committed queue write plus the follow-up work it implies."""

    snapshot: QueueSnapshot
    appointment_id: UUID
    fields: dict[str, Any]
    expected_statuses: frozenset[AppointmentStatus]
    notifications: list[tuple[UUID | None, NotificationType, dict[str, Any]]] = field(
        default_factory=list
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _wait(position: int) -> int:
    return estimate_wait_minutes(position, settings.QUEUE_AVERAGE_SERVICE_MINUTES)


def _require_transition(
    appointment: Appointment,
    target: AppointmentStatus,
) -> AppointmentStatus:
    """Check the status table; return the appointment's current status."""
    current = AppointmentStatus(appointment.status)
    if not current.can_transition_to(target):
        raise InvalidTransitionError(
            f"Cannot move appointment {appointment.id} from {current.value} to {target.value}"
        )
    return current


def _require_active_queue(db: Session, queue_id: UUID) -> QueueSnapshot:
    snapshot = queue_repository.get_queue(db, queue_id)
    if snapshot is None or not snapshot.is_active:
        raise QueueNotFoundError(f"Queue {queue_id} not found")
    return snapshot


def _payload(appointment: Appointment, queue_id: UUID | None, **extra: Any) -> dict[str, Any]:
    return {
        "appointment_id": str(appointment.id),
        "queue_id": str(queue_id) if queue_id else None,
        "token_number": appointment.token_number or "",
        **extra,
    }


# =============================================================================
# Write pipeline
# =============================================================================


def _write_queue(
    db: Session,
    operation: str,
    attempt: Callable[[], _Transition],
) -> _Transition:
    """Run attempt() + commit, retrying from a fresh read on write conflicts."""
    max_attempts = max(1, settings.QUEUE_MAX_WRITE_ATTEMPTS)
    attempt_no = 0
    while True:
        attempt_no += 1
        try:
            transition = attempt()
            queue_repository.commit(db, operation)
            return transition
        except ConcurrentModificationError:
            db.rollback()
            if attempt_no >= max_attempts:
                logger.warning(
                    "Queue write conflict persisted after %s attempts",
                    attempt_no,
                    extra=build_log_context(operation=operation, attempt=attempt_no),
                )
                raise
            logger.info(
                "Queue write conflict, retrying",
                extra=build_log_context(operation=operation, attempt=attempt_no),
            )
        except Exception:
            db.rollback()
            raise


def _sync_projection(db: Session, operation: str, transition: _Transition) -> None:
    """Bring the Appointment rows in line with the committed queue."""
    snapshot = transition.snapshot
    max_attempts = max(1, settings.QUEUE_MAX_WRITE_ATTEMPTS)
    attempt_no = 0
    while True:
        attempt_no += 1
        try:
            applied = appointment_store.update_appointment(
                db,
                transition.appointment_id,
                transition.fields,
                expected_statuses=transition.expected_statuses,
            )
            if not applied:
                logger.warning(
                    "Appointment status changed concurrently; leaving it as is",
                    extra=build_log_context(
                        queue_id=snapshot.id,
                        appointment_id=transition.appointment_id,
                        operation=operation,
                    ),
                )
            appointment_store.reposition_waiting(
                db, snapshot.active_tokens, settings.QUEUE_AVERAGE_SERVICE_MINUTES
            )
            queue_repository.commit(db, operation)
            return
        except StorageUnavailableError as e:
            db.rollback()
            if attempt_no >= max_attempts:
                logger.error(
                    "Appointment projection is behind queue %s; run reconcile",
                    snapshot.id,
                    extra=build_log_context(
                        queue_id=snapshot.id,
                        appointment_id=transition.appointment_id,
                        operation=operation,
                        attempt=attempt_no,
                    ),
                )
                raise ProjectionLagError(
                    f"Queue {snapshot.id} was updated but appointments are behind",
                    queue_id=snapshot.id,
                ) from e
        except Exception:
            db.rollback()
            raise


def _dispatch(notifier: NotificationSink | None, transition: _Transition) -> None:
    sink = notifier or notification_service.default_sink()
    for user_id, kind, payload in transition.notifications:
        if user_id is None:
            continue
        notification_service.deliver(
            sink, user_id, transition.snapshot.organization_id, kind, payload
        )


def _run(
    db: Session,
    operation: str,
    attempt: Callable[[], _Transition],
    notifier: NotificationSink | None,
) -> _Transition:
    transition = _write_queue(db, operation, attempt)
    logger.info(
        "Queue %s committed",
        operation,
        extra=build_log_context(
            org_id=transition.snapshot.organization_id,
            queue_id=transition.snapshot.id,
            appointment_id=transition.appointment_id,
            operation=operation,
        ),
    )
    _sync_projection(db, operation, transition)
    _dispatch(notifier, transition)
    return transition


# =============================================================================
# Operations
# =============================================================================


def check_in(
    db: Session,
    appointment_id: UUID,
    org_id: UUID,
    service_id: UUID,
    queue_date: date,
    notifier: NotificationSink | None = None,
) -> CheckInResult:
    """
    Put an arrived appointment at the back of its day's queue.

    Creates the queue on the first check-in for the key. Raises
    AlreadyQueuedError if the appointment is waiting or being served,
    QueueKeyMismatchError if it is booked for another service or day.
    """

    def attempt() -> _Transition:
        appointment = appointment_store.require_appointment(db, appointment_id, org_id)
        if appointment.service_id != service_id or appointment.appointment_date != queue_date:
            raise QueueKeyMismatchError(
                f"Appointment {appointment_id} is not booked for this service and day"
            )

        snapshot = queue_repository.get_queue_by_key(db, org_id, service_id, queue_date)
        if snapshot is not None and not snapshot.is_active:
            raise QueueNotFoundError(f"Queue {snapshot.id} is closed")
        updated = snapshot.with_checked_in(appointment_id) if snapshot else None

        prior = AppointmentStatus(appointment.status)
        if prior not in CHECK_IN_STATUSES:
            raise InvalidTransitionError(
                f"Cannot check in appointment {appointment_id} from {prior.value}"
            )

        if updated is None:
            saved = queue_repository.create_queue(
                db, org_id, service_id, queue_date, appointment_id
            )
        else:
            saved = queue_repository.replace_queue(db, updated)

        position = saved.position_of(appointment_id)
        return _Transition(
            snapshot=saved,
            appointment_id=appointment_id,
            fields={
                "status": AppointmentStatus.CHECKED_IN,
                "queue_position": position,
                "estimated_wait_minutes": _wait(position),
                "checked_in_at": _now(),
            },
            expected_statuses=frozenset({prior, AppointmentStatus.CHECKED_IN}),
        )

    # No customer notification on check-in.
    transition = _run(db, "check_in", attempt, notifier)
    return CheckInResult(
        queue_id=transition.snapshot.id,
        position=transition.snapshot.position_of(appointment_id),
    )


def call_next(
    db: Session,
    queue_id: UUID,
    notifier: NotificationSink | None = None,
) -> CallNextResult:
    """
    Move the head of the line into service and tell the customer.

    Raises EmptyQueueError with nobody waiting, TokenInServiceError while
    the previous token has not been completed, no-showed or skipped.
    """

    def attempt() -> _Transition:
        snapshot = _require_active_queue(db, queue_id)
        updated, called_id = snapshot.with_next_called()
        appointment = appointment_store.require_appointment(
            db, called_id, snapshot.organization_id
        )
        prior = _require_transition(appointment, AppointmentStatus.IN_PROGRESS)
        saved = queue_repository.replace_queue(db, updated)

        notifications = [
            (appointment.customer_id, NotificationType.YOUR_TURN, _payload(appointment, saved.id))
        ]
        if settings.QUEUE_NOTIFY_NEXT_IN_LINE and saved.active_tokens:
            head = appointment_store.get_appointment(db, saved.active_tokens[0])
            if head is not None:
                notifications.append(
                    (head.customer_id, NotificationType.TURN_REMINDER, _payload(head, saved.id))
                )

        return _Transition(
            snapshot=saved,
            appointment_id=called_id,
            fields={
                "status": AppointmentStatus.IN_PROGRESS,
                "queue_position": 0,  # Being served, not a waiting position
                "estimated_wait_minutes": 0,
            },
            expected_statuses=frozenset({prior, AppointmentStatus.IN_PROGRESS}),
            notifications=notifications,
        )

    transition = _run(db, "call_next", attempt, notifier)
    remaining = transition.snapshot.active_tokens
    return CallNextResult(
        queue_id=transition.snapshot.id,
        appointment_id=transition.appointment_id,
        next_in_line=remaining[0] if remaining else None,
    )


def mark_completed(
    db: Session,
    queue_id: UUID,
    appointment_id: UUID,
    notifier: NotificationSink | None = None,
) -> QueueSnapshot:
    """Finish service for the current token. Only the token in service qualifies."""

    def attempt() -> _Transition:
        snapshot = _require_active_queue(db, queue_id)
        updated = snapshot.with_completed(appointment_id)
        appointment = appointment_store.require_appointment(
            db, appointment_id, snapshot.organization_id
        )
        prior = _require_transition(appointment, AppointmentStatus.COMPLETED)
        saved = queue_repository.replace_queue(db, updated)
        return _Transition(
            snapshot=saved,
            appointment_id=appointment_id,
            fields={
                "status": AppointmentStatus.COMPLETED,
                "queue_position": None,
                "estimated_wait_minutes": None,
                "completed_at": _now(),
            },
            expected_statuses=frozenset({prior, AppointmentStatus.COMPLETED}),
        )

    return _run(db, "mark_completed", attempt, notifier).snapshot


def mark_no_show(
    db: Session,
    queue_id: UUID,
    appointment_id: UUID,
    notifier: NotificationSink | None = None,
) -> QueueSnapshot:
    """
    Demote a called (or waiting) customer to the back of the line.

    The appointment goes back to CHECKED_IN and the customer's lifetime
    no-show counter goes up by one. With QUEUE_MAX_NO_SHOWS set, the
    no-show that reaches the cap ends the visit as NO_SHOW instead.
    """

    def attempt() -> _Transition:
        snapshot = _require_active_queue(db, queue_id)
        cap = settings.QUEUE_MAX_NO_SHOWS
        terminal = cap > 0 and snapshot.no_show_count(appointment_id) + 1 >= cap
        updated = snapshot.with_no_show(appointment_id, requeue=not terminal)

        appointment = appointment_store.require_appointment(
            db, appointment_id, snapshot.organization_id
        )
        target = AppointmentStatus.NO_SHOW if terminal else AppointmentStatus.CHECKED_IN
        prior = _require_transition(appointment, target)
        saved = queue_repository.replace_queue(db, updated)
        # Same transaction as the queue write: counted exactly once.
        if appointment.customer_id:
            customer_store.increment_no_show_count(db, appointment.customer_id)

        position = saved.position_of(appointment_id)
        return _Transition(
            snapshot=saved,
            appointment_id=appointment_id,
            fields={
                "status": target,
                "queue_position": position,
                "estimated_wait_minutes": _wait(position) if position else None,
                "no_show_at": _now(),
            },
            expected_statuses=frozenset({prior, target}),
            notifications=[
                (appointment.customer_id, NotificationType.NO_SHOW, _payload(appointment, saved.id))
            ],
        )

    return _run(db, "mark_no_show", attempt, notifier).snapshot


def prioritize(
    db: Session,
    queue_id: UUID,
    appointment_id: UUID,
    actor_id: UUID | None = None,
    notifier: NotificationSink | None = None,
) -> QueueSnapshot:
    """Move a waiting token to the front of the line. Idempotent in effect."""

    def attempt() -> _Transition:
        snapshot = _require_active_queue(db, queue_id)
        updated = snapshot.with_prioritized(appointment_id)
        appointment = appointment_store.require_appointment(
            db, appointment_id, snapshot.organization_id
        )
        _require_transition(appointment, AppointmentStatus.CHECKED_IN)
        saved = snapshot if updated == snapshot else queue_repository.replace_queue(db, updated)
        return _Transition(
            snapshot=saved,
            appointment_id=appointment_id,
            fields={
                "prioritized": True,
                "prioritized_at": _now(),
                "prioritized_by": actor_id,
            },
            expected_statuses=frozenset({AppointmentStatus.CHECKED_IN}),
        )

    return _run(db, "prioritize", attempt, notifier).snapshot


def skip(
    db: Session,
    queue_id: UUID,
    appointment_id: UUID,
    reason: str = DEFAULT_SKIP_REASON,
    actor_id: UUID | None = None,
    notifier: NotificationSink | None = None,
) -> QueueSnapshot:
    """
    Remove a token from the queue for good and cancel its appointment.

    Works for a waiting token and for the token in service (service ends
    without completion). An appointment already cancelled elsewhere is just
    taken out of the line; its cancellation record and customer are left alone.
    """

    def attempt() -> _Transition:
        snapshot = _require_active_queue(db, queue_id)
        updated = snapshot.with_skipped(appointment_id)
        appointment = appointment_store.require_appointment(
            db, appointment_id, snapshot.organization_id
        )
        prior = AppointmentStatus(appointment.status)
        if prior == AppointmentStatus.CANCELLED:
            # Keep the existing cancellation record; only leave the line.
            saved = queue_repository.replace_queue(db, updated)
            return _Transition(
                snapshot=saved,
                appointment_id=appointment_id,
                fields={"queue_position": None, "estimated_wait_minutes": None},
                expected_statuses=frozenset({prior}),
            )

        _require_transition(appointment, AppointmentStatus.CANCELLED)
        saved = queue_repository.replace_queue(db, updated)
        return _Transition(
            snapshot=saved,
            appointment_id=appointment_id,
            fields={
                "status": AppointmentStatus.CANCELLED,
                "queue_position": None,
                "estimated_wait_minutes": None,
                "cancelled_at": _now(),
                "cancelled_by": actor_id,
                "cancellation_reason": reason,
            },
            expected_statuses=frozenset({prior}),
            notifications=[
                (
                    appointment.customer_id,
                    NotificationType.APPOINTMENT_CANCELLED,
                    _payload(appointment, saved.id, reason=reason),
                )
            ],
        )

    return _run(db, "skip", attempt, notifier).snapshot


# =============================================================================
# Reads
# =============================================================================


def get_queue(db: Session, queue_id: UUID) -> QueueSnapshot:
    """Get a queue (open or closed)."""
    snapshot = queue_repository.get_queue(db, queue_id)
    if snapshot is None:
        raise QueueNotFoundError(f"Queue {queue_id} not found")
    return snapshot


def list_queues(
    db: Session,
    org_id: UUID,
    queue_date: date | None = None,
    include_inactive: bool = False,
) -> list[QueueSnapshot]:
    return queue_repository.list_queues(db, org_id, queue_date, include_inactive)


def get_tokens(db: Session, snapshot: QueueSnapshot) -> list[Token]:
    """Waiting tokens with positions and prioritized flags."""
    prioritized = appointment_store.get_prioritized_ids(db, snapshot.active_tokens)
    return snapshot.tokens(prioritized)


def get_queue_status(db: Session, queue_id: UUID) -> QueueStatus:
    snapshot = get_queue(db, queue_id)
    return QueueStatus(
        queue_id=snapshot.id,
        is_active=snapshot.is_active,
        active_count=len(snapshot.active_tokens),
        current_token=snapshot.current_token,
        completed_count=len(snapshot.completed_tokens),
        no_show_count=len(snapshot.no_show_tokens),
        total_served=snapshot.total_served,
        estimated_wait_minutes=_wait(len(snapshot.active_tokens) + 1),
    )


# =============================================================================
# Administration
# =============================================================================


def close_queue(db: Session, queue_id: UUID) -> QueueSnapshot:
    """Deactivate a queue. Its tokens are kept; mutations are refused."""
    try:
        snapshot = queue_repository.set_queue_active(db, queue_id, False)
        queue_repository.commit(db, "close_queue")
    except Exception:
        db.rollback()
        raise
    logger.info("Closed queue %s", queue_id, extra=build_log_context(queue_id=queue_id))
    return snapshot


def reopen_queue(db: Session, queue_id: UUID) -> QueueSnapshot:
    try:
        snapshot = queue_repository.set_queue_active(db, queue_id, True)
        queue_repository.commit(db, "reopen_queue")
    except Exception:
        db.rollback()
        raise
    logger.info("Reopened queue %s", queue_id, extra=build_log_context(queue_id=queue_id))
    return snapshot


def close_day(db: Session, queue_date: date, org_id: UUID | None = None) -> int:
    """Deactivate every open queue for a day. Returns how many were closed."""
    try:
        closed = queue_repository.deactivate_queues_for_date(db, queue_date, org_id)
        queue_repository.commit(db, "close_day")
    except Exception:
        db.rollback()
        raise
    logger.info(
        "Closed %s queue(s) for %s",
        closed,
        queue_date.isoformat(),
        extra=build_log_context(org_id=org_id, operation="close_day"),
    )
    return closed


def reconcile_positions(db: Session, queue_id: UUID) -> int:
    """
    Recompute every Appointment projection from the queue's token order.

    Repair pass for projection writes that were left behind: statuses the
    queue implies are restored first, then positions and waits. Returns the
    number of appointment row writes.
    """
    snapshot = get_queue(db, queue_id)
    try:
        updated = appointment_store.restore_status(
            db,
            snapshot.active_tokens,
            AppointmentStatus.CHECKED_IN,
            [AppointmentStatus.BOOKED, AppointmentStatus.IN_PROGRESS],
        )
        if snapshot.current_token is not None:
            updated += appointment_store.restore_status(
                db,
                [snapshot.current_token],
                AppointmentStatus.IN_PROGRESS,
                [AppointmentStatus.CHECKED_IN],
            )
        updated += appointment_store.restore_status(
            db,
            snapshot.completed_tokens,
            AppointmentStatus.COMPLETED,
            [AppointmentStatus.IN_PROGRESS],
        )
        updated += appointment_store.reposition_waiting(
            db, snapshot.active_tokens, settings.QUEUE_AVERAGE_SERVICE_MINUTES
        )
        if snapshot.current_token is not None:
            if appointment_store.update_appointment(
                db,
                snapshot.current_token,
                {"queue_position": 0, "estimated_wait_minutes": 0},
                expected_statuses=[AppointmentStatus.IN_PROGRESS],
            ):
                updated += 1
        queue_repository.commit(db, "reconcile")
    except Exception:
        db.rollback()
        raise
    logger.info(
        "Reconciled %s appointment(s)",
        updated,
        extra=build_log_context(queue_id=queue_id, operation="reconcile"),
    )
    return updated
