from datetime import date, datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_now, get_session
from app.api.schemas.appointment import AvailabilityResponse, SlotInfo
from app.services.slot_service import get_availability

router = APIRouter(prefix="/availability", tags=["availability"])


@router.get("", response_model=AvailabilityResponse)
async def available_slots(
    provider_id: int = Query(..., alias="providerId"),
    date_param: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
    now: datetime = Depends(get_now),
) -> AvailabilityResponse:
    """Free slots for the provider on `date` (read in the business timezone); instants are UTC."""
    availability = await get_availability(session, provider_id, date_param, now=now)
    return AvailabilityResponse(
        provider_id=availability.provider_id,
        date=date_param.isoformat(),
        timezone=availability.timezone,
        slots=[SlotInfo(start=s.start, end=s.end) for s in availability.slots],
    )
