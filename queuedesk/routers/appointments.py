"""Appointment queue read model (polled by customer screens)."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from queuedesk.core.deps import get_db
from queuedesk.schemas.queue import AppointmentQueueRead
from queuedesk.services import appointment_store

router = APIRouter()


@router.get("/{appointment_id}/queue", response_model=AppointmentQueueRead)
def get_appointment_queue(appointment_id: UUID, db: Session = Depends(get_db)):
    """Status, position and estimated wait for one appointment."""
    appointment = appointment_store.get_appointment(db, appointment_id)
    if not appointment:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return AppointmentQueueRead.model_validate(appointment)
