from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.models.appointment import AppointmentStatus

MAX_APPOINTMENT_NOTES_LENGTH = 600


class SlotInfo(BaseModel):
    start: datetime
    end: datetime


class AvailabilityResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider_id: int = Field(alias="providerId")
    date: str  # YYYY-MM-DD, in the business timezone
    timezone: str
    slots: list[SlotInfo]


class BookAppointmentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    service_id: int = Field(alias="serviceId")
    provider_id: int = Field(alias="providerId")
    business_id: int | None = Field(default=None, alias="businessId")
    # Parsed by the booking service so provider/service checks run first
    start: str = Field(min_length=1)
    client_name: str = Field(alias="clientName")
    client_email: EmailStr = Field(alias="clientEmail")
    client_phone: str | None = Field(default=None, alias="clientPhone")
    notes: str | None = None

    @field_validator("client_name")
    @classmethod
    def validate_client_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Client name is required.")
        return normalized

    @field_validator("client_phone", "notes")
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is not None and len(value) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f"Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.")
        return value


class BookingResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    status: str
    start: datetime
    end: datetime
    service_id: int = Field(alias="serviceId")
    provider_id: int = Field(alias="providerId")
    total_cents: int = Field(alias="totalCents")


class UpdateStatusRequest(BaseModel):
    status: AppointmentStatus
