from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import CheckConstraint, DateTime, Index
from sqlmodel import Field, SQLModel


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class AppointmentStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# Staff-driven lifecycle; COMPLETED and CANCELLED are terminal.
ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.CONFIRMED: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("end_utc > start_utc", name="ck_appointments_interval"),
        Index("ix_appointments_provider_interval", "provider_id", "start_utc", "end_utc"),
    )
    id: int | None = Field(default=None, primary_key=True)
    business_id: int = Field(foreign_key="businesses.id", index=True)
    provider_id: int = Field(foreign_key="providers.id", index=True)
    service_id: int = Field(foreign_key="services.id", index=True)
    client_name: str
    client_email: str
    client_phone: str | None = None
    notes: str | None = None
    start_utc: datetime = Field(sa_type=DateTime())
    # Always start_utc + service duration; written only by the booking path
    end_utc: datetime = Field(sa_type=DateTime())
    status: str = Field(default=AppointmentStatus.PENDING.value, index=True, max_length=16)
    total_cents: int = 0
    created_at: datetime = Field(default_factory=_utc_naive_now, sa_type=DateTime())
    updated_at: datetime = Field(default_factory=_utc_naive_now, sa_type=DateTime())


class ClientInfo(SQLModel):
    name: str
    email: str
    phone: str | None = None
    notes: str | None = None


class AppointmentPublic(SQLModel):
    id: int
    business_id: int
    provider_id: int
    service_id: int
    client_name: str
    client_email: str
    client_phone: str | None = None
    notes: str | None = None
    start_utc: datetime
    end_utc: datetime
    status: str
    total_cents: int
    created_at: datetime
    updated_at: datetime
