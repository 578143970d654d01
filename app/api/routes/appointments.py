import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_staff, get_session
from app.api.schemas.appointment import (
    BookAppointmentRequest,
    BookingResponse,
    UpdateStatusRequest,
)
from app.core.security import StaffClaims
from app.models.appointment import (
    Appointment,
    AppointmentPublic,
    AppointmentStatus,
    ClientInfo,
)
from app.services.appointment_service import (
    book_slot,
    list_appointments_for_business,
    update_appointment_status,
)
from app.services.slot_service import as_utc

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/appointments", tags=["appointments"])


def _naive(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        return dt.replace(tzinfo=None)
    return dt


def _to_public(a: Appointment) -> AppointmentPublic:
    """Staff-facing shape; datetimes are naive UTC as stored."""
    return AppointmentPublic(
        id=int(a.id),
        business_id=a.business_id,
        provider_id=a.provider_id,
        service_id=a.service_id,
        client_name=a.client_name,
        client_email=a.client_email,
        client_phone=a.client_phone,
        notes=a.notes,
        start_utc=_naive(a.start_utc),
        end_utc=_naive(a.end_utc),
        status=a.status,
        total_cents=a.total_cents,
        created_at=_naive(a.created_at),
        updated_at=_naive(a.updated_at),
    )


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    body: BookAppointmentRequest,
    session: AsyncSession = Depends(get_session),
) -> BookingResponse:
    """Book a slot. 400 for invalid input, 409 when the slot was taken in the meantime."""
    client = ClientInfo(
        name=body.client_name,
        email=str(body.client_email),
        phone=body.client_phone,
        notes=body.notes,
    )
    appointment = await book_slot(
        session,
        provider_id=body.provider_id,
        service_id=body.service_id,
        start=body.start,
        client=client,
        business_id=body.business_id,
    )
    return BookingResponse(
        id=appointment.id,
        status=appointment.status,
        start=as_utc(appointment.start_utc),
        end=as_utc(appointment.end_utc),
        service_id=appointment.service_id,
        provider_id=appointment.provider_id,
        total_cents=appointment.total_cents,
    )


@router.get("/admin", response_model=list[AppointmentPublic])
async def list_business_appointments(
    from_date: date | None = Query(None, alias="from_date"),
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    session: AsyncSession = Depends(get_session),
    staff: StaffClaims = Depends(get_current_staff),
) -> list[AppointmentPublic]:
    """Staff endpoint: all appointments of the caller's business, ordered by start."""
    appointments = await list_appointments_for_business(
        session, staff.business_id, from_date=from_date, status=status_filter
    )
    return [_to_public(a) for a in appointments]


@router.patch("/{appointment_id}/status", response_model=AppointmentPublic)
async def change_appointment_status(
    appointment_id: int,
    body: UpdateStatusRequest,
    session: AsyncSession = Depends(get_session),
    staff: StaffClaims = Depends(get_current_staff),
) -> AppointmentPublic:
    appointment = await update_appointment_status(
        session, staff.business_id, appointment_id, body.status
    )
    logger.info("Staff %s set appointment %s to %s", staff.subject, appointment_id, body.status.value)
    return _to_public(appointment)
