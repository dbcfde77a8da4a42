"""Organization model (Zendesk organizations)."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ticketsync.database import Base
from ticketsync.models.ticket import JSONType


class Organization(Base):
    """Customer organization, refreshed from a full snapshot every run."""

    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    name: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    domain_names: Mapped[list[str] | None] = mapped_column(JSONType)
    details: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    tags: Mapped[list[str] | None] = mapped_column(JSONType)

    def __repr__(self) -> str:
        return f"<Organization {self.id}: {self.name}>"
