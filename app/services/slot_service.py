from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import NamedTuple
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ValidationError
from app.models.appointment import Appointment, AppointmentStatus
from app.models.business import Business
from app.models.provider import Provider
from app.services.catalog_service import business_zone, get_business, get_provider


class TimeSlot(NamedTuple):
    """Bookable window; both ends are timezone-aware UTC."""
    start: datetime
    end: datetime


@dataclass
class ProviderAvailability:
    provider_id: int
    on_date: date
    timezone: str
    slots: list[TimeSlot] = field(default_factory=list)


def blocking_statuses(include_completed: bool | None = None) -> tuple[str, ...]:
    """Statuses that make an appointment occupy its interval for availability."""
    if include_completed is None:
        include_completed = settings.completed_blocks_availability
    statuses = [AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value]
    if include_completed:
        statuses.append(AppointmentStatus.COMPLETED.value)
    return tuple(statuses)


def intervals_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """Half-open overlap: touching endpoints do not conflict."""
    return a_start < b_end and a_end > b_start


def as_utc(dt: datetime) -> datetime:
    """Aware UTC; naive values are taken to be UTC already (how they are stored)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_naive_utc(dt: datetime) -> datetime:
    """Convert to naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    if dt.tzinfo is not None:
        return dt.astimezone(UTC).replace(tzinfo=None)
    return dt


def working_window(provider: Provider, zone: ZoneInfo, on_date: date) -> tuple[datetime, datetime]:
    """Provider's hours on `on_date`, read as wall-clock time in `zone`, returned in UTC."""
    start = datetime(on_date.year, on_date.month, on_date.day, provider.work_start_hour, tzinfo=zone)
    end = datetime(on_date.year, on_date.month, on_date.day, provider.work_end_hour, tzinfo=zone)
    return start.astimezone(UTC), end.astimezone(UTC)


def generate_slots(
    provider: Provider,
    business: Business,
    appointments: Iterable[Appointment],
    on_date: date,
    slot_duration_minutes: int = 30,
    now: datetime | None = None,
) -> list[TimeSlot]:
    """Fixed-width slots for `provider` on `on_date`, minus booked and past ones.

    Slot width is independent of service duration. Appointments whose status
    does not block availability are ignored. Returns an empty list for an
    inactive provider, a date before the business's today, an empty working
    window, or a non-positive width.
    """
    if not provider.is_active:
        return []
    if slot_duration_minutes <= 0 or provider.work_end_hour <= provider.work_start_hour:
        return []

    zone = business_zone(business)
    now_utc = as_utc(now) if now is not None else datetime.now(UTC)
    today = now_utc.astimezone(zone).date()
    if on_date < today:
        return []

    window_start, window_end = working_window(provider, zone, on_date)
    statuses = blocking_statuses()
    busy = [
        (as_utc(a.start_utc), as_utc(a.end_utc))
        for a in appointments
        if a.status in statuses
    ]
    only_future = on_date == today
    step = timedelta(minutes=slot_duration_minutes)

    slots: list[TimeSlot] = []
    cursor = window_start
    # Steps are absolute durations in UTC, so DST shifts do not skew widths
    while cursor + step <= window_end:
        slot_end = cursor + step
        is_past = only_future and cursor < now_utc
        is_booked = any(intervals_overlap(b_start, b_end, cursor, slot_end) for b_start, b_end in busy)
        if not is_past and not is_booked:
            slots.append(TimeSlot(cursor, slot_end))
        cursor = slot_end
    return slots


async def get_blocking_appointments(
    session: AsyncSession,
    provider_id: int,
    start_inclusive: datetime,
    end_exclusive: datetime,
    statuses: Iterable[str] | None = None,
) -> list[Appointment]:
    """Appointments for the provider whose interval intersects [start, end)."""
    if statuses is None:
        statuses = blocking_statuses()
    result = await session.execute(
        select(Appointment)
        .where(
            Appointment.provider_id == provider_id,
            Appointment.status.in_(list(statuses)),
            Appointment.start_utc < to_naive_utc(end_exclusive),
            Appointment.end_utc > to_naive_utc(start_inclusive),
        )
        .order_by(Appointment.start_utc)
    )
    return list(result.scalars().all())


async def get_availability(
    session: AsyncSession,
    provider_id: int,
    on_date: date,
    now: datetime | None = None,
    slot_duration_minutes: int | None = None,
) -> ProviderAvailability:
    provider = await get_provider(session, provider_id)
    if provider is None:
        raise ValidationError("Provider not found")
    business = await get_business(session, provider.business_id)
    if business is None:
        raise ValidationError("Provider has no business")
    if slot_duration_minutes is None:
        slot_duration_minutes = settings.slot_duration_minutes

    availability = ProviderAvailability(
        provider_id=provider.id, on_date=on_date, timezone=business.timezone
    )
    if not provider.is_active or provider.work_end_hour <= provider.work_start_hour:
        return availability

    window_start, window_end = working_window(provider, business_zone(business), on_date)
    appointments = await get_blocking_appointments(session, provider.id, window_start, window_end)
    availability.slots = generate_slots(
        provider,
        business,
        appointments,
        on_date,
        slot_duration_minutes=slot_duration_minutes,
        now=now,
    )
    return availability
