"""Persistence of per-entity sync cursors and run status."""

import logging
from datetime import datetime

from sqlalchemy import case, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketsync.database import upsert
from ticketsync.models.sync_checkpoint import (
    STATUS_ERROR,
    STATUS_SUCCESS,
    STATUS_SYNCING,
    SyncCheckpoint,
)
from ticketsync.services.dates import as_utc, utc_now

logger = logging.getLogger(__name__)


class CheckpointStore:
    """
    Reads and upserts ``sync_checkpoints`` rows.

    Owned by a single syncer run and bound to that run's session. The cursor
    never moves backwards: ``mark_success`` keeps the stored cursor when the
    proposed one is older.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, entity_type: str) -> SyncCheckpoint | None:
        result = await self.db.execute(
            select(SyncCheckpoint).where(SyncCheckpoint.entity_type == entity_type)
        )
        return result.scalar_one_or_none()

    async def get_cursor(self, entity_type: str) -> datetime | None:
        """Get last successful cursor for an entity type."""
        checkpoint = await self.get(entity_type)
        return as_utc(checkpoint.cursor) if checkpoint else None

    async def list_all(self) -> list[SyncCheckpoint]:
        result = await self.db.execute(
            select(SyncCheckpoint).order_by(SyncCheckpoint.entity_type)
        )
        return list(result.scalars().all())

    async def _write(self, entity_type: str, values: dict, on_conflict) -> None:
        values["entity_type"] = entity_type
        values["updated_at"] = utc_now()
        stmt = upsert(
            self.db, SyncCheckpoint, values, ["entity_type"], on_conflict=on_conflict
        )
        await self.db.execute(stmt)
        await self.db.commit()
        # The ORM identity map may hold a stale copy of this row
        self.db.expire_all()

    async def _write_status(
        self, entity_type: str, status: str, error_message: str | None
    ) -> None:
        # New rows start with no cursor; existing cursors and counts are kept
        await self._write(
            entity_type,
            {
                "status": status,
                "error_message": error_message,
                "cursor": None,
                "records_synced": 0,
            },
            lambda excluded: {
                "status": excluded.status,
                "error_message": excluded.error_message,
                "updated_at": excluded.updated_at,
            },
        )

    async def mark_syncing(self, entity_type: str) -> None:
        await self._write_status(entity_type, STATUS_SYNCING, None)

    async def mark_success(
        self,
        entity_type: str,
        cursor: datetime,
        records: int,
    ) -> datetime:
        """
        Record a completed run and advance the cursor.

        The comparison with the stored cursor and the count increment happen
        inside the upsert, so overlapping runs for the same entity can neither
        move the cursor back nor lose each other's counts.

        Returns:
            The cursor actually stored (never older than the previous one)
        """
        proposed = as_utc(cursor)

        def on_conflict(excluded):
            return {
                "status": excluded.status,
                "error_message": excluded.error_message,
                "updated_at": excluded.updated_at,
                "cursor": case(
                    (
                        or_(
                            SyncCheckpoint.cursor.is_(None),
                            excluded.cursor > SyncCheckpoint.cursor,
                        ),
                        excluded.cursor,
                    ),
                    else_=SyncCheckpoint.cursor,
                ),
                "records_synced": SyncCheckpoint.records_synced + excluded.records_synced,
            }

        await self._write(
            entity_type,
            {
                "status": STATUS_SUCCESS,
                "error_message": None,
                "cursor": proposed,
                "records_synced": records,
            },
            on_conflict,
        )

        stored = await self.get_cursor(entity_type)
        if stored is not None and stored > proposed:
            logger.warning(
                f"Refusing to move {entity_type} cursor back from {stored} "
                f"to {proposed}; keeping {stored}"
            )
        return stored

    async def mark_error(self, entity_type: str, message: str) -> None:
        """Record a failed run. The cursor is left untouched."""
        await self._write_status(entity_type, STATUS_ERROR, message)
