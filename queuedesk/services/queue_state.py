"""
Queue aggregate and its pure transitions.

A QueueSnapshot is an immutable copy of one Queue row. Every transition
returns a new snapshot (or raises) and never touches storage, so the engine
can compute the next state, then hand it to the repository's
compare-and-swap write.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import date
from uuid import UUID

from queuedesk.services.queue_errors import (
    AlreadyQueuedError,
    EmptyQueueError,
    NotCurrentTokenError,
    TokenInServiceError,
    TokenNotQueuedError,
)


def estimate_wait_minutes(position: int, average_service_minutes: int) -> int:
    """Estimated wait for a 1-based waiting position (0 while in service)."""
    return max(position, 0) * max(average_service_minutes, 0)


@dataclass(frozen=True)
class Token:
    """One customer's place in line. Position is derived, never stored."""

    appointment_id: UUID
    position: int
    prioritized: bool = False


@dataclass(frozen=True)
class QueueSnapshot:
    organization_id: UUID
    service_id: UUID
    queue_date: date
    active_tokens: tuple[UUID, ...] = ()
    current_token: UUID | None = None
    completed_tokens: tuple[UUID, ...] = ()
    no_show_tokens: tuple[UUID, ...] = ()
    total_served: int = 0
    is_active: bool = True
    id: UUID | None = None
    version: int = 0

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def position_of(self, appointment_id: UUID) -> int | None:
        """1-based waiting position, or None if not waiting."""
        try:
            return self.active_tokens.index(appointment_id) + 1
        except ValueError:
            return None

    def is_waiting(self, appointment_id: UUID) -> bool:
        return appointment_id in self.active_tokens

    def is_serving(self, appointment_id: UUID) -> bool:
        return self.current_token is not None and self.current_token == appointment_id

    def no_show_count(self, appointment_id: UUID) -> int:
        return self.no_show_tokens.count(appointment_id)

    def tokens(self, prioritized: Iterable[UUID] = ()) -> list[Token]:
        flagged = set(prioritized)
        return [
            Token(appointment_id=token, position=index, prioritized=token in flagged)
            for index, token in enumerate(self.active_tokens, start=1)
        ]

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def with_checked_in(self, appointment_id: UUID) -> QueueSnapshot:
        """Append to the back of the line."""
        if self.is_waiting(appointment_id) or self.is_serving(appointment_id):
            raise AlreadyQueuedError(f"Appointment {appointment_id} is already in the queue")
        return replace(self, active_tokens=self.active_tokens + (appointment_id,))

    def with_next_called(self) -> tuple[QueueSnapshot, UUID]:
        """Move the head of the line into service."""
        if not self.active_tokens:
            raise EmptyQueueError("No tokens in queue")
        if self.current_token is not None:
            raise TokenInServiceError(
                f"Token {self.current_token} is still being served"
            )
        head, rest = self.active_tokens[0], self.active_tokens[1:]
        return replace(self, current_token=head, active_tokens=rest), head

    def with_completed(self, appointment_id: UUID) -> QueueSnapshot:
        if not self.is_serving(appointment_id):
            raise NotCurrentTokenError(
                f"Appointment {appointment_id} is not the token being served"
            )
        return replace(
            self,
            current_token=None,
            completed_tokens=self.completed_tokens + (appointment_id,),
            total_served=self.total_served + 1,
        )

    def with_no_show(self, appointment_id: UUID, *, requeue: bool = True) -> QueueSnapshot:
        """Record a no-show; by default the token goes to the back of the line."""
        self._require_in_queue(appointment_id)
        active = tuple(token for token in self.active_tokens if token != appointment_id)
        if requeue:
            active += (appointment_id,)
        return replace(
            self,
            active_tokens=active,
            current_token=None if self.is_serving(appointment_id) else self.current_token,
            no_show_tokens=self.no_show_tokens + (appointment_id,),
        )

    def with_prioritized(self, appointment_id: UUID) -> QueueSnapshot:
        """Move a waiting token to the front, keeping everyone else's order."""
        if not self.is_waiting(appointment_id):
            raise TokenNotQueuedError(f"Appointment {appointment_id} is not waiting in this queue")
        rest = tuple(token for token in self.active_tokens if token != appointment_id)
        return replace(self, active_tokens=(appointment_id,) + rest)

    def with_skipped(self, appointment_id: UUID) -> QueueSnapshot:
        """Remove a token for good (waiting or in service); it joins no list."""
        self._require_in_queue(appointment_id)
        return replace(
            self,
            active_tokens=tuple(token for token in self.active_tokens if token != appointment_id),
            current_token=None if self.is_serving(appointment_id) else self.current_token,
        )

    def _require_in_queue(self, appointment_id: UUID) -> None:
        if not (self.is_waiting(appointment_id) or self.is_serving(appointment_id)):
            raise TokenNotQueuedError(f"Appointment {appointment_id} is not in this queue")
