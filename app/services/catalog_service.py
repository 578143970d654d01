from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationError
from app.models.business import Business
from app.models.provider import Provider
from app.models.service import Service


async def get_business(session: AsyncSession, business_id: int) -> Business | None:
    result = await session.execute(select(Business).where(Business.id == business_id))
    return result.scalar_one_or_none()


async def get_provider(session: AsyncSession, provider_id: int) -> Provider | None:
    result = await session.execute(select(Provider).where(Provider.id == provider_id))
    return result.scalar_one_or_none()


async def get_service(session: AsyncSession, service_id: int) -> Service | None:
    result = await session.execute(select(Service).where(Service.id == service_id))
    return result.scalar_one_or_none()


def business_zone(business: Business) -> ZoneInfo:
    """Resolve the business timezone; the host timezone is never a fallback."""
    try:
        return ZoneInfo(business.timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"Business timezone {business.timezone!r} is not a valid IANA zone") from exc
