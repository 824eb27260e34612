"""Queue repository: whole-aggregate reads and compare-and-swap writes."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from uuid import UUID

from sqlalchemy import and_, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from queuedesk.db.models import Queue
from queuedesk.services.queue_errors import (
    ConcurrentModificationError,
    QueueNotFoundError,
    StorageUnavailableError,
)
from queuedesk.services.queue_state import QueueSnapshot

logger = logging.getLogger(__name__)


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    """Translate transient driver failures into StorageUnavailableError."""
    try:
        yield
    except IntegrityError:
        raise
    except DBAPIError as exc:
        if isinstance(exc, OperationalError) or exc.connection_invalidated:
            logger.warning("Storage unavailable during %s: %s", action, exc.__class__.__name__)
            raise StorageUnavailableError(f"Storage unavailable during {action}") from exc
        raise


def commit(db: Session, action: str = "commit") -> None:
    with storage_errors(action):
        db.commit()


def _to_snapshot(row: Queue) -> QueueSnapshot:
    return QueueSnapshot(
        id=row.id,
        organization_id=row.organization_id,
        service_id=row.service_id,
        queue_date=row.queue_date,
        active_tokens=tuple(UUID(token) for token in row.active_tokens or []),
        current_token=row.current_token,
        completed_tokens=tuple(UUID(token) for token in row.completed_tokens or []),
        no_show_tokens=tuple(UUID(token) for token in row.no_show_tokens or []),
        total_served=row.total_served,
        is_active=row.is_active,
        version=row.version,
    )


def _token_list(tokens: tuple[UUID, ...]) -> list[str]:
    return [str(token) for token in tokens]


# =============================================================================
# Reads
# =============================================================================


def get_queue(db: Session, queue_id: UUID) -> QueueSnapshot | None:
    """Get a queue by ID (active or not)."""
    with storage_errors("get queue"):
        row = db.execute(
            select(Queue)
            .where(Queue.id == queue_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
    return _to_snapshot(row) if row else None


def get_queue_by_key(
    db: Session,
    org_id: UUID,
    service_id: UUID,
    queue_date: date,
) -> QueueSnapshot | None:
    """Get the queue for (organization, service, date)."""
    with storage_errors("get queue by key"):
        row = db.execute(
            select(Queue)
            .where(
                and_(
                    Queue.organization_id == org_id,
                    Queue.service_id == service_id,
                    Queue.queue_date == queue_date,
                )
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
    return _to_snapshot(row) if row else None


def list_queues(
    db: Session,
    org_id: UUID,
    queue_date: date | None = None,
    include_inactive: bool = False,
) -> list[QueueSnapshot]:
    """List queues for an organization, optionally for one day."""
    query = select(Queue).where(Queue.organization_id == org_id)
    if queue_date is not None:
        query = query.where(Queue.queue_date == queue_date)
    if not include_inactive:
        query = query.where(Queue.is_active.is_(True))
    query = query.order_by(Queue.queue_date, Queue.created_at).execution_options(populate_existing=True)
    with storage_errors("list queues"):
        rows = db.execute(query).scalars().all()
    return [_to_snapshot(row) for row in rows]


# =============================================================================
# Writes
# =============================================================================


def create_queue(
    db: Session,
    org_id: UUID,
    service_id: UUID,
    queue_date: date,
    initial_token: UUID,
) -> QueueSnapshot:
    """Create the queue for a key with its first waiting token."""
    row = Queue(
        organization_id=org_id,
        service_id=service_id,
        queue_date=queue_date,
        active_tokens=[str(initial_token)],
        current_token=None,
        completed_tokens=[],
        no_show_tokens=[],
        total_served=0,
        is_active=True,
        version=1,
    )
    try:
        with storage_errors("create queue"):
            db.add(row)
            db.flush()
    except IntegrityError:
        db.rollback()
        raise ConcurrentModificationError(
            f"Queue for service {service_id} on {queue_date.isoformat()} was created concurrently"
        )
    logger.info("Created queue %s for service %s on %s", row.id, service_id, queue_date.isoformat())
    return _to_snapshot(row)


def _raise_write_miss(db: Session, queue_id: UUID) -> None:
    """Explain a zero-row write: gone/closed, or someone else won."""
    is_active = db.execute(
        select(Queue.is_active).where(Queue.id == queue_id)
    ).scalar_one_or_none()
    if not is_active:
        raise QueueNotFoundError(f"Queue {queue_id} not found")
    raise ConcurrentModificationError(f"Queue {queue_id} was modified concurrently")


def replace_queue(db: Session, new_state: QueueSnapshot) -> QueueSnapshot:
    """
    Replace the whole aggregate if its version is still new_state.version.

    Returns the stored snapshot (version bumped). Raises QueueNotFoundError
    if the queue is gone or deactivated, ConcurrentModificationError if
    another writer got there first.
    """
    if new_state.id is None:
        raise ValueError("Cannot replace a queue that has not been created")

    stmt = (
        update(Queue)
        .where(
            and_(
                Queue.id == new_state.id,
                Queue.version == new_state.version,
                Queue.is_active.is_(True),
            )
        )
        .values(
            active_tokens=_token_list(new_state.active_tokens),
            current_token=new_state.current_token,
            completed_tokens=_token_list(new_state.completed_tokens),
            no_show_tokens=_token_list(new_state.no_show_tokens),
            total_served=new_state.total_served,
            version=Queue.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    with storage_errors("replace queue"):
        result = db.execute(stmt)
        if result.rowcount != 1:
            _raise_write_miss(db, new_state.id)
    return replace(new_state, version=new_state.version + 1)


def set_queue_active(db: Session, queue_id: UUID, is_active: bool) -> QueueSnapshot:
    """Open or close a queue. Closed queues reject every mutation."""
    with storage_errors("set queue active"):
        result = db.execute(
            update(Queue)
            .where(Queue.id == queue_id)
            .values(is_active=is_active, version=Queue.version + 1)
            .execution_options(synchronize_session=False)
        )
    if result.rowcount != 1:
        raise QueueNotFoundError(f"Queue {queue_id} not found")
    snapshot = get_queue(db, queue_id)
    if snapshot is None:
        raise QueueNotFoundError(f"Queue {queue_id} not found")
    return snapshot


def deactivate_queues_for_date(
    db: Session,
    queue_date: date,
    org_id: UUID | None = None,
) -> int:
    """Close every active queue for a day. Returns the number closed."""
    stmt = update(Queue).where(
        and_(Queue.queue_date == queue_date, Queue.is_active.is_(True))
    )
    if org_id is not None:
        stmt = stmt.where(Queue.organization_id == org_id)
    with storage_errors("close day"):
        result = db.execute(
            stmt.values(is_active=False, version=Queue.version + 1).execution_options(
                synchronize_session=False
            )
        )
    return result.rowcount
