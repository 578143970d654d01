from app.models.business import Business
from app.models.provider import Provider
from app.models.service import Service
from app.models.appointment import (
    ALLOWED_TRANSITIONS,
    Appointment,
    AppointmentPublic,
    AppointmentStatus,
    ClientInfo,
)

__all__ = [
    "Business",
    "Provider",
    "Service",
    "Appointment",
    "AppointmentPublic",
    "AppointmentStatus",
    "ALLOWED_TRANSITIONS",
    "ClientInfo",
]
