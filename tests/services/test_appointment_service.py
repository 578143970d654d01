import asyncio
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import func, select

from app.core.config import settings
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import Appointment, AppointmentStatus, ClientInfo
from app.services.appointment_service import (
    book_slot,
    list_appointments_for_business,
    parse_start,
    provider_locks,
    update_appointment_status,
)
from app.services.slot_service import get_availability

NEW_YORK = ZoneInfo("America/New_York")
DAY = date(2030, 3, 4)
BEFORE_DAY = datetime(2030, 3, 1, 12, 0, tzinfo=UTC)
CLIENT = ClientInfo(name="Dana Client", email="dana@example.com", notes="First visit")


def local(hour: int, minute: int = 0) -> datetime:
    return datetime(DAY.year, DAY.month, DAY.day, hour, minute, tzinfo=NEW_YORK)


async def count_appointments(session_maker, provider_id: int) -> int:
    async with session_maker() as session:
        result = await session.execute(
            select(func.count()).select_from(Appointment).where(Appointment.provider_id == provider_id)
        )
        return result.scalar_one()


async def test_book_slot_creates_pending_appointment_with_derived_end(session, catalog) -> None:
    appointment = await book_slot(
        session,
        provider_id=catalog["provider"].id,
        service_id=catalog["service"].id,
        start=local(10),
        client=CLIENT,
    )

    assert appointment.id is not None
    assert appointment.status == AppointmentStatus.PENDING.value
    assert appointment.business_id == catalog["business"].id
    # Stored as naive UTC; 10:00 EST is 15:00 UTC
    assert appointment.start_utc == datetime(2030, 3, 4, 15, 0)
    assert appointment.end_utc == datetime(2030, 3, 4, 16, 0)
    assert appointment.total_cents == 6000
    assert appointment.notes == "First visit"


async def test_book_slot_reads_naive_start_in_business_timezone(session, catalog) -> None:
    appointment = await book_slot(
        session,
        provider_id=catalog["provider"].id,
        service_id=catalog["consult"].id,
        start="2030-03-04T09:30:00",
        client=CLIENT,
    )

    assert appointment.start_utc == datetime(2030, 3, 4, 14, 30)
    assert appointment.end_utc == datetime(2030, 3, 4, 15, 0)


async def test_book_slot_accepts_utc_iso_string(session, catalog) -> None:
    appointment = await book_slot(
        session,
        provider_id=catalog["provider"].id,
        service_id=catalog["consult"].id,
        start="2030-03-04T14:30:00Z",
        client=CLIENT,
    )

    assert appointment.start_utc == datetime(2030, 3, 4, 14, 30)


def test_parse_start_rejects_garbage() -> None:
    with pytest.raises(ValidationError):
        parse_start("next tuesday-ish", NEW_YORK)


async def test_unparseable_start_is_rejected_without_writing(session, session_maker, catalog) -> None:
    with pytest.raises(ValidationError):
        await book_slot(
            session,
            provider_id=catalog["provider"].id,
            service_id=catalog["service"].id,
            start="not-a-date",
            client=CLIENT,
        )

    assert await count_appointments(session_maker, catalog["provider"].id) == 0


@pytest.mark.parametrize(
    ("provider_key", "service_key", "message"),
    [
        ("inactive_provider", "service", "Provider not found or inactive"),
        ("provider", "inactive_service", "Service not found or inactive"),
        ("provider", "other_service", "Service does not belong to this business"),
    ],
)
async def test_invalid_provider_or_service_is_a_validation_error(
    session, session_maker, catalog, provider_key, service_key, message
) -> None:
    with pytest.raises(ValidationError) as exception_info:
        await book_slot(
            session,
            provider_id=catalog[provider_key].id,
            service_id=catalog[service_key].id,
            start=local(10),
            client=CLIENT,
        )

    assert exception_info.value.message == message
    assert await count_appointments(session_maker, catalog[provider_key].id) == 0


async def test_unknown_provider_is_a_validation_error(session, catalog) -> None:
    with pytest.raises(ValidationError):
        await book_slot(session, provider_id=9999, service_id=catalog["service"].id, start=local(10), client=CLIENT)


async def test_provider_from_another_business_is_rejected(session, catalog) -> None:
    with pytest.raises(ValidationError) as exception_info:
        await book_slot(
            session,
            provider_id=catalog["provider"].id,
            service_id=catalog["service"].id,
            start=local(10),
            client=CLIENT,
            business_id=catalog["other_business"].id,
        )

    assert exception_info.value.message == "Provider does not belong to this business"


async def test_overlapping_booking_conflicts_and_writes_nothing(session_maker, catalog) -> None:
    async with session_maker() as session:
        await book_slot(
            session, provider_id=catalog["provider"].id, service_id=catalog["service"].id, start=local(10), client=CLIENT
        )

    async with session_maker() as session:
        with pytest.raises(ConflictError):
            await book_slot(
                session,
                provider_id=catalog["provider"].id,
                service_id=catalog["consult"].id,
                start=local(10, 30),
                client=CLIENT,
            )

    assert await count_appointments(session_maker, catalog["provider"].id) == 1


async def test_identical_second_request_conflicts(session_maker, catalog) -> None:
    for _ in range(2):
        async with session_maker() as session:
            try:
                await book_slot(
                    session,
                    provider_id=catalog["provider"].id,
                    service_id=catalog["consult"].id,
                    start=local(11),
                    client=CLIENT,
                )
            except ConflictError:
                pass

    assert await count_appointments(session_maker, catalog["provider"].id) == 1


async def test_touching_intervals_do_not_conflict(session_maker, catalog) -> None:
    async with session_maker() as session:
        await book_slot(
            session, provider_id=catalog["provider"].id, service_id=catalog["service"].id, start=local(10), client=CLIENT
        )
    async with session_maker() as session:
        await book_slot(
            session, provider_id=catalog["provider"].id, service_id=catalog["consult"].id, start=local(11), client=CLIENT
        )
    async with session_maker() as session:
        await book_slot(
            session, provider_id=catalog["provider"].id, service_id=catalog["consult"].id, start=local(9, 30), client=CLIENT
        )

    assert await count_appointments(session_maker, catalog["provider"].id) == 3


async def test_long_service_at_a_free_slot_start_conflicts_with_later_booking(session_maker, catalog) -> None:
    # 10:00 is offered as a free 30-minute slot, but a 90-minute service would run into 11:00
    async with session_maker() as session:
        await book_slot(
            session, provider_id=catalog["provider"].id, service_id=catalog["consult"].id, start=local(11), client=CLIENT
        )
    async with session_maker() as session:
        availability = await get_availability(session, catalog["provider"].id, DAY, now=BEFORE_DAY)
    assert local(10) in [s.start for s in availability.slots]

    async with session_maker() as session:
        with pytest.raises(ConflictError):
            await book_slot(
                session,
                provider_id=catalog["provider"].id,
                service_id=catalog["contouring"].id,
                start=local(10),
                client=CLIENT,
            )


async def test_cancelled_appointment_frees_its_interval(session_maker, catalog) -> None:
    async with session_maker() as session:
        first = await book_slot(
            session, provider_id=catalog["provider"].id, service_id=catalog["service"].id, start=local(10), client=CLIENT
        )
    async with session_maker() as session:
        await update_appointment_status(session, catalog["business"].id, first.id, AppointmentStatus.CANCELLED)
        await session.commit()

    async with session_maker() as session:
        second = await book_slot(
            session, provider_id=catalog["provider"].id, service_id=catalog["service"].id, start=local(10), client=CLIENT
        )

    assert second.id != first.id
    assert await count_appointments(session_maker, catalog["provider"].id) == 2


async def test_concurrent_overlapping_bookings_admit_exactly_one(session_maker, catalog) -> None:
    async def attempt(start: datetime):
        async with session_maker() as session:
            return await book_slot(
                session,
                provider_id=catalog["provider"].id,
                service_id=catalog["service"].id,
                start=start,
                client=CLIENT,
            )

    results = await asyncio.gather(attempt(local(14)), attempt(local(14)), return_exceptions=True)

    booked = [r for r in results if isinstance(r, Appointment)]
    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert len(booked) == 1
    assert len(conflicts) == 1
    assert await count_appointments(session_maker, catalog["provider"].id) == 1


async def test_concurrent_bookings_for_different_providers_both_succeed(session_maker, catalog) -> None:
    async def attempt(provider_id: int, service_id: int, start: datetime):
        async with session_maker() as session:
            return await book_slot(session, provider_id=provider_id, service_id=service_id, start=start, client=CLIENT)

    results = await asyncio.gather(
        attempt(catalog["provider"].id, catalog["service"].id, local(14)),
        attempt(catalog["other_provider"].id, catalog["other_service"].id, local(14)),
    )

    assert all(isinstance(r, Appointment) for r in results)


def test_provider_locks_are_shared_per_provider() -> None:
    lock = provider_locks.for_provider(41)

    assert provider_locks.for_provider(41) is lock
    assert provider_locks.for_provider(42) is not lock


async def test_get_availability_drops_booked_slots(session_maker, catalog) -> None:
    async with session_maker() as session:
        await book_slot(
            session, provider_id=catalog["provider"].id, service_id=catalog["service"].id, start=local(9), client=CLIENT
        )

    async with session_maker() as session:
        availability = await get_availability(session, catalog["provider"].id, DAY, now=BEFORE_DAY)

    assert availability.timezone == "America/New_York"
    assert len(availability.slots) == 14
    assert availability.slots[0].start == local(10)


async def test_get_availability_for_inactive_provider_is_empty(session, catalog) -> None:
    availability = await get_availability(session, catalog["inactive_provider"].id, DAY, now=BEFORE_DAY)

    assert availability.slots == []


async def test_get_availability_for_unknown_provider_is_a_validation_error(session, catalog) -> None:
    with pytest.raises(ValidationError):
        await get_availability(session, 9999, DAY, now=BEFORE_DAY)


async def test_status_transitions(session_maker, catalog) -> None:
    business_id = catalog["business"].id
    async with session_maker() as session:
        appointment = await book_slot(
            session, provider_id=catalog["provider"].id, service_id=catalog["service"].id, start=local(10), client=CLIENT
        )

    async with session_maker() as session:
        confirmed = await update_appointment_status(session, business_id, appointment.id, AppointmentStatus.CONFIRMED)
        assert confirmed.status == "CONFIRMED"
        unchanged = await update_appointment_status(session, business_id, appointment.id, AppointmentStatus.CONFIRMED)
        assert unchanged.status == "CONFIRMED"
        completed = await update_appointment_status(session, business_id, appointment.id, AppointmentStatus.COMPLETED)
        assert completed.status == "COMPLETED"

        with pytest.raises(ValidationError):
            await update_appointment_status(session, business_id, appointment.id, AppointmentStatus.CANCELLED)
        with pytest.raises(ValidationError):
            await update_appointment_status(session, business_id, appointment.id, AppointmentStatus.PENDING)


async def test_status_update_outside_business_is_not_found(session_maker, catalog) -> None:
    async with session_maker() as session:
        appointment = await book_slot(
            session, provider_id=catalog["provider"].id, service_id=catalog["service"].id, start=local(10), client=CLIENT
        )

    async with session_maker() as session:
        with pytest.raises(NotFoundError):
            await update_appointment_status(
                session, catalog["other_business"].id, appointment.id, AppointmentStatus.CONFIRMED
            )


async def test_list_appointments_for_business_filters(session_maker, catalog) -> None:
    business_id = catalog["business"].id
    async with session_maker() as session:
        later = await book_slot(
            session, provider_id=catalog["provider"].id, service_id=catalog["consult"].id, start=local(15), client=CLIENT
        )
    async with session_maker() as session:
        earlier = await book_slot(
            session, provider_id=catalog["provider"].id, service_id=catalog["consult"].id, start=local(9), client=CLIENT
        )
    async with session_maker() as session:
        await book_slot(
            session,
            provider_id=catalog["other_provider"].id,
            service_id=catalog["other_service"].id,
            start=local(9),
            client=CLIENT,
        )
    async with session_maker() as session:
        await update_appointment_status(session, business_id, later.id, AppointmentStatus.CONFIRMED)
        await session.commit()

    async with session_maker() as session:
        everything = await list_appointments_for_business(session, business_id)
        confirmed = await list_appointments_for_business(session, business_id, status=AppointmentStatus.CONFIRMED)
        from_next_day = await list_appointments_for_business(session, business_id, from_date=DAY + timedelta(days=1))

    assert [a.id for a in everything] == [earlier.id, later.id]
    assert [a.id for a in confirmed] == [later.id]
    assert from_next_day == []


async def test_list_from_date_starts_at_business_midnight(session_maker, catalog) -> None:
    business_id = catalog["business"].id
    async with session_maker() as session:
        # 21:00 EST is 02:00 UTC on the following day
        evening = await book_slot(
            session, provider_id=catalog["provider"].id, service_id=catalog["consult"].id, start=local(21), client=CLIENT
        )

    async with session_maker() as session:
        same_day = await list_appointments_for_business(session, business_id, from_date=DAY)
        next_day = await list_appointments_for_business(session, business_id, from_date=DAY + timedelta(days=1))

    assert [a.id for a in same_day] == [evening.id]
    assert next_day == []


async def test_completed_appointment_still_conflicts_when_not_blocking_availability(
    session_maker, catalog, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(settings, "completed_blocks_availability", False)
    provider_id = catalog["provider"].id
    async with session_maker() as session:
        appointment = await book_slot(
            session, provider_id=provider_id, service_id=catalog["consult"].id, start=local(10), client=CLIENT
        )
    async with session_maker() as session:
        await update_appointment_status(
            session, catalog["business"].id, appointment.id, AppointmentStatus.COMPLETED
        )
        await session.commit()

    async with session_maker() as session:
        availability = await get_availability(session, provider_id, DAY, now=BEFORE_DAY)
    assert local(10) in [slot.start for slot in availability.slots]

    async with session_maker() as session:
        with pytest.raises(ConflictError):
            await book_slot(
                session, provider_id=provider_id, service_id=catalog["consult"].id, start=local(10), client=CLIENT
            )
    assert await count_appointments(session_maker, provider_id) == 1
