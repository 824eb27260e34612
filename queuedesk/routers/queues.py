"""Queue engine API endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from queuedesk.core.deps import get_actor_id, get_db, get_notifier
from queuedesk.schemas.queue import (
    CallNextResponse,
    CheckInRequest,
    CheckInResponse,
    QueueRead,
    QueueStatusRead,
    QueueSummary,
    ReconcileResponse,
    SkipRequest,
    TokenActionRequest,
    TokenRead,
)
from queuedesk.services import queue_service
from queuedesk.services.notification_service import NotificationSink
from queuedesk.services.queue_errors import (
    AlreadyQueuedError,
    AppointmentNotFoundError,
    ConcurrentModificationError,
    EmptyQueueError,
    InvalidTransitionError,
    NotCurrentTokenError,
    ProjectionLagError,
    QueueNotFoundError,
    QueueServiceError,
    StorageUnavailableError,
    TokenInServiceError,
    TokenNotQueuedError,
)
from queuedesk.services.queue_state import QueueSnapshot

router = APIRouter()


# Conflicts the caller can resolve by refreshing the queue view.
_CONFLICT_ERRORS = (
    AlreadyQueuedError,
    EmptyQueueError,
    TokenInServiceError,
    NotCurrentTokenError,
    TokenNotQueuedError,
    InvalidTransitionError,
)


def _http_error(e: QueueServiceError) -> HTTPException:
    """Translate a queue engine error into an HTTP response."""
    if isinstance(e, (QueueNotFoundError, AppointmentNotFoundError)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, _CONFLICT_ERRORS):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ConcurrentModificationError):
        return HTTPException(
            status_code=409,
            detail="Queue is busy, please retry",
        )
    if isinstance(e, ProjectionLagError):
        # The change is committed; a blind retry would apply it twice.
        return HTTPException(
            status_code=500,
            detail="Queue updated but appointment records are behind; reconcile the queue",
        )
    if isinstance(e, StorageUnavailableError):
        return HTTPException(status_code=503, detail="Queue storage unavailable")
    return HTTPException(status_code=400, detail=str(e))


def _queue_to_response(db: Session, snapshot: QueueSnapshot) -> QueueRead:
    tokens = queue_service.get_tokens(db, snapshot)
    return QueueRead(
        id=snapshot.id,
        organization_id=snapshot.organization_id,
        service_id=snapshot.service_id,
        queue_date=snapshot.queue_date,
        current_token=snapshot.current_token,
        active_tokens=[TokenRead.model_validate(token) for token in tokens],
        completed_count=len(snapshot.completed_tokens),
        no_show_count=len(snapshot.no_show_tokens),
        total_served=snapshot.total_served,
        is_active=snapshot.is_active,
        version=snapshot.version,
    )


# =============================================================================
# Reads
# =============================================================================


@router.get("", response_model=list[QueueSummary])
def list_queues(
    organization_id: UUID,
    queue_date: date | None = Query(None, alias="date"),
    include_inactive: bool = False,
    db: Session = Depends(get_db),
):
    """List queues for an organization, optionally for one day."""
    queues = queue_service.list_queues(db, organization_id, queue_date, include_inactive)
    return [
        QueueSummary(
            id=q.id,
            service_id=q.service_id,
            queue_date=q.queue_date,
            current_token=q.current_token,
            active_count=len(q.active_tokens),
            total_served=q.total_served,
            is_active=q.is_active,
        )
        for q in queues
    ]


@router.get("/{queue_id}", response_model=QueueRead)
def get_queue(queue_id: UUID, db: Session = Depends(get_db)):
    """Get a queue with its waiting line."""
    try:
        snapshot = queue_service.get_queue(db, queue_id)
    except QueueServiceError as e:
        raise _http_error(e)
    return _queue_to_response(db, snapshot)


@router.get("/{queue_id}/status", response_model=QueueStatusRead)
def get_queue_status(queue_id: UUID, db: Session = Depends(get_db)):
    try:
        return queue_service.get_queue_status(db, queue_id)
    except QueueServiceError as e:
        raise _http_error(e)


# =============================================================================
# Token Operations
# =============================================================================


@router.post("/check-in", response_model=CheckInResponse, status_code=status.HTTP_201_CREATED)
def check_in(
    data: CheckInRequest,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    """Check an arrived appointment into its day's queue."""
    try:
        return queue_service.check_in(
            db,
            data.appointment_id,
            data.organization_id,
            data.service_id,
            data.queue_date,
            notifier=notifier,
        )
    except QueueServiceError as e:
        raise _http_error(e)


@router.post("/{queue_id}/call-next", response_model=CallNextResponse)
def call_next(
    queue_id: UUID,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    """Call the head of the line to the counter."""
    try:
        return queue_service.call_next(db, queue_id, notifier=notifier)
    except QueueServiceError as e:
        raise _http_error(e)


@router.post("/{queue_id}/complete", response_model=QueueRead)
def complete(
    queue_id: UUID,
    data: TokenActionRequest,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    """Finish service for the token at the counter."""
    try:
        snapshot = queue_service.mark_completed(
            db, queue_id, data.appointment_id, notifier=notifier
        )
    except QueueServiceError as e:
        raise _http_error(e)
    return _queue_to_response(db, snapshot)


@router.post("/{queue_id}/no-show", response_model=QueueRead)
def no_show(
    queue_id: UUID,
    data: TokenActionRequest,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    """Send a customer who did not answer the call to the back of the line."""
    try:
        snapshot = queue_service.mark_no_show(
            db, queue_id, data.appointment_id, notifier=notifier
        )
    except QueueServiceError as e:
        raise _http_error(e)
    return _queue_to_response(db, snapshot)


@router.post("/{queue_id}/prioritize", response_model=QueueRead)
def prioritize(
    queue_id: UUID,
    data: TokenActionRequest,
    db: Session = Depends(get_db),
    actor_id: UUID | None = Depends(get_actor_id),
    notifier: NotificationSink = Depends(get_notifier),
):
    """Move a waiting token to the front of the line."""
    try:
        snapshot = queue_service.prioritize(
            db, queue_id, data.appointment_id, actor_id=actor_id, notifier=notifier
        )
    except QueueServiceError as e:
        raise _http_error(e)
    return _queue_to_response(db, snapshot)


@router.post("/{queue_id}/skip", response_model=QueueRead)
def skip(
    queue_id: UUID,
    data: SkipRequest,
    db: Session = Depends(get_db),
    actor_id: UUID | None = Depends(get_actor_id),
    notifier: NotificationSink = Depends(get_notifier),
):
    """Remove a token from the queue and cancel its appointment."""
    try:
        snapshot = queue_service.skip(
            db,
            queue_id,
            data.appointment_id,
            reason=data.reason,
            actor_id=actor_id,
            notifier=notifier,
        )
    except QueueServiceError as e:
        raise _http_error(e)
    return _queue_to_response(db, snapshot)


# =============================================================================
# Administration
# =============================================================================


@router.post("/{queue_id}/close", response_model=QueueRead)
def close_queue(queue_id: UUID, db: Session = Depends(get_db)):
    """Close a queue for the day. Tokens are kept, mutations are refused."""
    try:
        snapshot = queue_service.close_queue(db, queue_id)
    except QueueServiceError as e:
        raise _http_error(e)
    return _queue_to_response(db, snapshot)


@router.post("/{queue_id}/reopen", response_model=QueueRead)
def reopen_queue(queue_id: UUID, db: Session = Depends(get_db)):
    try:
        snapshot = queue_service.reopen_queue(db, queue_id)
    except QueueServiceError as e:
        raise _http_error(e)
    return _queue_to_response(db, snapshot)


@router.post("/{queue_id}/reconcile", response_model=ReconcileResponse)
def reconcile(queue_id: UUID, db: Session = Depends(get_db)):
    """Rewrite appointment positions from the queue's current order."""
    try:
        updated = queue_service.reconcile_positions(db, queue_id)
    except QueueServiceError as e:
        raise _http_error(e)
    return ReconcileResponse(queue_id=queue_id, updated=updated)
