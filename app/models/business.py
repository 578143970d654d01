from sqlmodel import Field, SQLModel


class Business(SQLModel, table=True):
    __tablename__ = "businesses"
    id: int | None = Field(default=None, primary_key=True)
    name: str
    slug: str = Field(unique=True, index=True)
    timezone: str = "America/New_York"  # IANA name; all wall-clock hours are read in this zone
    is_active: bool = True
