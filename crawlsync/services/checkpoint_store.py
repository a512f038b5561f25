import logging
from datetime import datetime, timezone

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crawlsync.models.sync_source import SyncSource
from crawlsync.schemas.checkpoints import CheckpointBase, dump_checkpoint, load_checkpoint
from crawlsync.services.collector.checkpoint import FlushHook
from crawlsync.services.collector.errors import InvalidConfig

logger = logging.getLogger("crawlsync.checkpoint_store")


class CheckpointStore:
    """Reads and writes the checkpoint blob stored on each ``SyncSource`` row."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_source(self, key: str) -> SyncSource:
        result = await self._session.execute(select(SyncSource).where(SyncSource.key == key))
        source = result.scalar_one_or_none()
        if source is None:
            raise InvalidConfig(f"Unknown sync source: {key}")
        return source

    async def load(self, key: str) -> CheckpointBase | None:
        result = await self._session.execute(
            select(SyncSource.checkpoint).where(SyncSource.key == key)
        )
        data = result.scalar_one_or_none()
        try:
            return load_checkpoint(data)
        except ValidationError as e:
            raise InvalidConfig(f"Stored checkpoint for {key} is unreadable: {e}") from e

    async def save(self, key: str, checkpoint: CheckpointBase) -> None:
        await self._session.execute(
            update(SyncSource)
            .where(SyncSource.key == key)
            .values(
                checkpoint=dump_checkpoint(checkpoint),
                checkpoint_updated_at=datetime.now(timezone.utc),
            )
        )
        await self._session.commit()
        logger.debug("Saved checkpoint for %s (last_timestamp=%s)", key, checkpoint.last_timestamp)

    def flush_hook(self, key: str) -> FlushHook:
        """Callback handed to the engine for mid-run partial checkpoints."""

        async def _flush(checkpoint: CheckpointBase) -> None:
            await self.save(key, checkpoint)

        return _flush
