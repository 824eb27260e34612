"""SQLAlchemy ORM models for queues and the records they project onto."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from queuedesk.db.base import Base
from queuedesk.db.enums import DEFAULT_APPOINTMENT_STATUS


class Customer(Base):
    """
    Customer profile fields the queue engine touches.

    Profiles live in the platform user store; only the lifetime
    no-show counter is written from here.
    """

    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    no_show_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )


class Appointment(Base):
    """
    A booked visit for one customer at one organization/service/date.

    Queue fields (status, queue_position, estimated_wait_minutes and the
    transition timestamps) are a projection of the Queue row: the Queue's
    token order is authoritative and these are rewritten after every queue
    mutation.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_org_service_date", "organization_id", "service_id", "appointment_date"),
        Index("idx_appointments_customer", "customer_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    service_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True
    )
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    token_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    appointment_time: Mapped[str | None] = mapped_column(String(5), nullable=True)  # HH:MM

    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_APPOINTMENT_STATUS.value, nullable=False
    )
    queue_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    estimated_wait_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    prioritized: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    prioritized_at: Mapped[datetime | None] = mapped_column(nullable=True)
    prioritized_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    checked_in_at: Mapped[datetime | None] = mapped_column(nullable=True)
    no_show_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    customer: Mapped[Customer | None] = relationship()


class Queue(Base):
    """
    Waiting line for one (organization, service, date).

    Token lists hold appointment ids as strings. `version` is bumped on
    every replace and is the compare-and-swap token for writers.
    Queues are deactivated, never deleted.
    """

    __tablename__ = "queues"
    __table_args__ = (
        UniqueConstraint("organization_id", "service_id", "queue_date", name="uq_queue_key"),
        Index("idx_queues_org_date_active", "organization_id", "queue_date", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    service_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    queue_date: Mapped[date] = mapped_column(Date, nullable=False)

    active_tokens: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    current_token: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    completed_tokens: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    no_show_tokens: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    total_served: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )


class Notification(Base):
    """In-app notification written by the default notification sink."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_user_unread", "user_id", "is_read"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    data: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
