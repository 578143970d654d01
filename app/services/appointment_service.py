import asyncio
import logging
import weakref
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.appointment import (
    ALLOWED_TRANSITIONS,
    Appointment,
    AppointmentStatus,
    ClientInfo,
)
from app.models.provider import Provider
from app.services.catalog_service import business_zone, get_business, get_provider, get_service
from app.services.slot_service import get_blocking_appointments, to_naive_utc

logger = logging.getLogger(__name__)

# Every status except CANCELLED occupies its interval for booking purposes
NON_CANCELLED_STATUSES = tuple(s.value for s in AppointmentStatus if s is not AppointmentStatus.CANCELLED)

SLOT_TAKEN_MESSAGE = "This time slot is no longer available"


class ProviderLocks:
    """One asyncio.Lock per provider, dropped once no request holds or waits on it."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    def for_provider(self, provider_id: int) -> asyncio.Lock:
        lock = self._locks.get(provider_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[provider_id] = lock
        return lock


provider_locks = ProviderLocks()


def _utc_naive_now() -> datetime:
    """Naive UTC for comparison with TIMESTAMP WITHOUT TIME ZONE."""
    return datetime.now(UTC).replace(tzinfo=None)


def parse_start(value: datetime | str, zone: ZoneInfo) -> datetime:
    """Resolve a requested start to an aware UTC instant.

    Naive values are wall-clock time in the business zone.
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip())
        except ValueError as exc:
            raise ValidationError("Start must be an ISO-8601 datetime") from exc
    if not isinstance(value, datetime):
        raise ValidationError("Start must be an ISO-8601 datetime")
    if value.tzinfo is None:
        value = value.replace(tzinfo=zone)
    try:
        return value.astimezone(UTC)
    except OverflowError as exc:
        raise ValidationError("Start is out of range") from exc


async def find_conflicting_appointments(
    session: AsyncSession, provider_id: int, start_utc: datetime, end_utc: datetime
) -> list[Appointment]:
    return await get_blocking_appointments(
        session, provider_id, start_utc, end_utc, statuses=NON_CANCELLED_STATUSES
    )


async def _lock_provider_row(session: AsyncSession, provider_id: int) -> None:
    # Serialises bookings across processes on PostgreSQL; SQLite ignores FOR UPDATE
    await session.execute(select(Provider.id).where(Provider.id == provider_id).with_for_update())


async def book_slot(
    session: AsyncSession,
    *,
    provider_id: int,
    service_id: int,
    start: datetime | str,
    client: ClientInfo,
    business_id: int | None = None,
) -> Appointment:
    """Reserve [start, start + service duration) for the provider, or raise.

    Raises ValidationError for unknown/inactive provider, service or business
    and for an unparseable start; ConflictError when a non-cancelled
    appointment of the provider overlaps the interval. The overlap check and
    the insert run under a provider-scoped lock and are committed before the
    lock is released.
    """
    provider = await get_provider(session, provider_id)
    if provider is None or not provider.is_active:
        raise ValidationError("Provider not found or inactive")
    if business_id is None:
        business_id = provider.business_id
    elif provider.business_id != business_id:
        raise ValidationError("Provider does not belong to this business")
    business = await get_business(session, business_id)
    if business is None or not business.is_active:
        raise ValidationError("Business not found or inactive")

    service = await get_service(session, service_id)
    if service is None or not service.is_active:
        raise ValidationError("Service not found or inactive")
    if service.business_id != business_id:
        raise ValidationError("Service does not belong to this business")

    start_utc = parse_start(start, business_zone(business))
    try:
        end_utc = start_utc + timedelta(minutes=service.duration_minutes)
    except OverflowError as exc:
        raise ValidationError("Start is out of range") from exc

    async with provider_locks.for_provider(provider.id):
        await _lock_provider_row(session, provider.id)
        conflicts = await find_conflicting_appointments(session, provider.id, start_utc, end_utc)
        if conflicts:
            logger.info(
                "Booking conflict: provider=%s interval=[%s, %s) overlaps appointment %s",
                provider_id, start_utc.isoformat(), end_utc.isoformat(), conflicts[0].id,
            )
            # Release the provider row lock before the in-process lock
            await session.rollback()
            raise ConflictError(SLOT_TAKEN_MESSAGE)

        appointment = Appointment(
            business_id=business_id,
            provider_id=provider_id,
            service_id=service_id,
            client_name=client.name,
            client_email=client.email,
            client_phone=client.phone,
            notes=client.notes,
            start_utc=to_naive_utc(start_utc),
            end_utc=to_naive_utc(end_utc),
            status=AppointmentStatus.PENDING.value,
            total_cents=service.price_cents,
        )
        session.add(appointment)
        try:
            await session.flush()
            await session.commit()
        except IntegrityError as exc:
            # Exclusion constraint on PostgreSQL caught a booking from another process
            await session.rollback()
            logger.info("Booking conflict from storage constraint: provider=%s", provider_id)
            raise ConflictError(SLOT_TAKEN_MESSAGE) from exc

    logger.info(
        "Booked appointment %s: provider=%s service=%s start=%s",
        appointment.id, provider_id, service_id, start_utc.isoformat(),
    )
    return appointment


async def list_appointments_for_business(
    session: AsyncSession,
    business_id: int,
    from_date: date | None = None,
    status: AppointmentStatus | None = None,
) -> list[Appointment]:
    q = select(Appointment).where(Appointment.business_id == business_id).order_by(Appointment.start_utc)
    if from_date:
        # Midnight in the business zone, stored as naive UTC
        business = await get_business(session, business_id)
        if business is None:
            return []
        start = datetime(from_date.year, from_date.month, from_date.day, tzinfo=business_zone(business))
        q = q.where(Appointment.start_utc >= to_naive_utc(start))
    if status is not None:
        q = q.where(Appointment.status == status.value)
    result = await session.execute(q)
    return list(result.scalars().all())


async def update_appointment_status(
    session: AsyncSession,
    business_id: int,
    appointment_id: int,
    new_status: AppointmentStatus,
) -> Appointment:
    result = await session.execute(
        select(Appointment).where(
            Appointment.id == appointment_id,
            Appointment.business_id == business_id,
        )
    )
    appointment = result.scalar_one_or_none()
    if not appointment:
        raise NotFoundError("Appointment not found")
    current = AppointmentStatus(appointment.status)
    if new_status == current:
        return appointment
    if new_status not in ALLOWED_TRANSITIONS[current]:
        raise ValidationError(f"Cannot change status from {current.value} to {new_status.value}")
    appointment.status = new_status.value
    appointment.updated_at = _utc_naive_now()
    session.add(appointment)
    await session.flush()
    logger.info("Appointment %s: %s -> %s", appointment_id, current.value, new_status.value)
    return appointment
