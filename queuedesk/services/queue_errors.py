"""Queue engine exceptions, shared by the repository, stores and engine."""

from uuid import UUID


class QueueServiceError(Exception):
    """Base exception for queue service errors."""

    pass


class QueueNotFoundError(QueueServiceError):
    """Queue not found, or deactivated."""

    pass


class AppointmentNotFoundError(QueueServiceError):
    """Appointment not found in the organization."""

    pass


class AlreadyQueuedError(QueueServiceError):
    """Appointment is already waiting or being served."""

    pass


class EmptyQueueError(QueueServiceError):
    """No waiting tokens to call."""

    pass


class TokenInServiceError(QueueServiceError):
    """Another token is still being served; complete, no-show or skip it first."""

    pass


class NotCurrentTokenError(QueueServiceError):
    """Appointment is not the token being served."""

    pass


class TokenNotQueuedError(QueueServiceError):
    """Appointment is not in this queue."""

    pass


class InvalidTransitionError(QueueServiceError):
    """Appointment status does not allow the requested transition."""

    pass


class QueueKeyMismatchError(QueueServiceError):
    """Appointment belongs to a different service or day than the queue."""

    pass


class ConcurrentModificationError(QueueServiceError):
    """Optimistic write lost against a concurrent writer."""

    pass


class StorageUnavailableError(QueueServiceError):
    """Transient backend failure; safe to retry."""

    pass


class ProjectionLagError(QueueServiceError):
    """
    The queue write committed but the appointment rows could not follow.

    The operation took effect; retrying it would apply it twice. Run
    reconcile_positions on the queue instead.
    """

    def __init__(self, message: str, queue_id: UUID):
        super().__init__(message)
        self.queue_id = queue_id
