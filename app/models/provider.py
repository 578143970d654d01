from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel


class Provider(SQLModel, table=True):
    __tablename__ = "providers"
    __table_args__ = (
        CheckConstraint("work_start_hour >= 0 AND work_start_hour <= 23", name="ck_providers_work_start_hour"),
        CheckConstraint("work_end_hour >= 0 AND work_end_hour <= 23", name="ck_providers_work_end_hour"),
    )
    id: int | None = Field(default=None, primary_key=True)
    business_id: int = Field(foreign_key="businesses.id", index=True)
    name: str
    email: str | None = None
    is_active: bool = True
    # Half-open [start, end) in the business timezone, same every day
    work_start_hour: int = 9
    work_end_hour: int = 17
