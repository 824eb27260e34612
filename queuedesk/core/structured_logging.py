"""Structured logging helpers (PII-safe)."""

import logging
from typing import Any
from uuid import UUID

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    """Install the root handler used by the API and the CLI."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )


def build_log_context(
    *,
    org_id: UUID | str | None = None,
    queue_id: UUID | str | None = None,
    appointment_id: UUID | str | None = None,
    operation: str | None = None,
    attempt: int | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict (identifiers only, never names)."""
    context: dict[str, Any] = {}
    if org_id:
        context["org_id"] = str(org_id)
    if queue_id:
        context["queue_id"] = str(queue_id)
    if appointment_id:
        context["appointment_id"] = str(appointment_id)
    if operation:
        context["operation"] = operation
    if attempt is not None:
        context["attempt"] = attempt
    return context
