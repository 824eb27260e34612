"""Enum definitions for application constants."""

from enum import Enum


class AppointmentStatus(str, Enum):
    """
    Appointment lifecycle status.

    Flow: booked → checked_in → in_progress → completed
                       ↑             |
                       +-- no-show --+
          checked_in / in_progress ↘ cancelled (skip)
          checked_in / in_progress ↘ no_show (no-show cap reached)
    """

    BOOKED = "BOOKED"
    CHECKED_IN = "CHECKED_IN"  # Waiting in the line
    IN_PROGRESS = "IN_PROGRESS"  # Called, being served
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"  # Terminal only when the per-day no-show cap is hit

    @property
    def is_terminal(self) -> bool:
        return not APPOINTMENT_TRANSITIONS[self]

    def can_transition_to(self, target: "AppointmentStatus") -> bool:
        return target in APPOINTMENT_TRANSITIONS[self]

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid status."""
        return value in cls._value2member_map_


APPOINTMENT_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.BOOKED: frozenset(
        {AppointmentStatus.CHECKED_IN, AppointmentStatus.CANCELLED}
    ),
    # CHECKED_IN -> CHECKED_IN covers re-check-in after a scanner pre-mark
    # and a no-show requeue of a waiting token.
    AppointmentStatus.CHECKED_IN: frozenset(
        {
            AppointmentStatus.CHECKED_IN,
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.IN_PROGRESS: frozenset(
        {
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CHECKED_IN,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}


class NotificationType(str, Enum):
    """In-app notification kinds emitted by queue transitions."""

    TURN_REMINDER = "TURN_REMINDER"  # Next in line
    YOUR_TURN = "YOUR_TURN"
    NO_SHOW = "NO_SHOW"
    APPOINTMENT_CANCELLED = "APPOINTMENT_CANCELLED"


DEFAULT_APPOINTMENT_STATUS = AppointmentStatus.BOOKED
DEFAULT_SKIP_REASON = "Skipped by admin"
