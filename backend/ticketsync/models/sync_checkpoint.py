"""SyncCheckpoint model to track incremental ingestion progress."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from ticketsync.database import Base

STATUS_IDLE = "idle"
STATUS_SYNCING = "syncing"
STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


class SyncCheckpoint(Base):
    """
    Tracks the sync cursor and run status for each entity type.

    The cursor only moves forward, and only when a run reaches a completion
    condition. A failed run records its error but leaves the cursor alone.
    """

    __tablename__ = "sync_checkpoints"

    # 'tickets', 'organizations', 'agents' or 'groups'
    entity_type: Mapped[str] = mapped_column(String(50), primary_key=True)
    cursor: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), default=STATUS_IDLE, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text)
    records_synced: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<SyncCheckpoint {self.entity_type}: {self.status} @ {self.cursor}>"
