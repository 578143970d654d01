from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel


class Service(SQLModel, table=True):
    __tablename__ = "services"
    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_services_duration_positive"),
        CheckConstraint("price_cents >= 0", name="ck_services_price_non_negative"),
    )
    id: int | None = Field(default=None, primary_key=True)
    business_id: int = Field(foreign_key="businesses.id", index=True)
    name: str
    description: str | None = None
    duration_minutes: int
    price_cents: int = 0
    is_active: bool = True
