import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable

from crawlsync.config import settings
from crawlsync.schemas.checkpoints import CheckpointBase, cap_tracked_ids
from crawlsync.services.collector.base import ContentItem
from crawlsync.services.collector.errors import InvalidConfig

logger = logging.getLogger("crawlsync.collector.checkpoint")

FlushHook = Callable[[CheckpointBase], Awaitable[None]]

_BASE_FIELDS = {"kind", *CheckpointBase.model_fields}


class CheckpointManager:
    """Derives the next resume token and performs mid-run flushes.

    This is the only component that builds checkpoints. ``flush`` is the
    single place where partial state leaves the run before it completes.
    """

    def __init__(
        self,
        model: type[CheckpointBase],
        flush_hook: FlushHook | None = None,
        max_tracked_ids: int | None = None,
    ) -> None:
        self._model = model
        self._flush_hook = flush_hook
        self._max_tracked_ids = (
            settings.max_tracked_ids if max_tracked_ids is None else max_tracked_ids
        )
        self.flush_count = 0

    def check(self, checkpoint: CheckpointBase | None) -> CheckpointBase | None:
        if checkpoint is not None and not isinstance(checkpoint, self._model):
            raise InvalidConfig(
                f"Checkpoint of type {type(checkpoint).__name__} does not belong to "
                f"a {self._model.__name__} source"
            )
        return checkpoint

    def advance(
        self,
        existing: CheckpointBase | None,
        latest_item: ContentItem | None,
        next_cursor: str | None,
        items_processed: int,
        oldest_item: ContentItem | None = None,
        **extra,
    ) -> CheckpointBase:
        """Build the checkpoint the next run starts from.

        ``last_timestamp`` only moves forward. When ``next_cursor`` is set the
        walk was cut short: the backlog keeps the stop point it had when it
        started, and remembers the oldest item emitted so far so pages that
        shifted under new arrivals are not emitted twice.
        """
        self.check(existing)

        last_timestamp = existing.last_timestamp if existing else None
        if latest_item is not None and (
            last_timestamp is None or latest_item.published_at > last_timestamp
        ):
            last_timestamp = latest_item.published_at

        backlog_stop = backlog_oldest = None
        if next_cursor is not None:
            resuming = existing is not None and existing.pagination_token is not None
            if resuming:
                backlog_stop = existing.backlog_stop_timestamp
                backlog_oldest = existing.backlog_oldest_timestamp
            elif existing is not None:
                backlog_stop = existing.last_timestamp
            if oldest_item is not None and (
                backlog_oldest is None or oldest_item.published_at < backlog_oldest
            ):
                backlog_oldest = oldest_item.published_at

        carried = {}
        if existing is not None:
            carried = {
                k: v for k, v in existing.model_dump().items() if k not in _BASE_FIELDS
            }
        carried.update(extra)

        return self._model(
            last_timestamp=last_timestamp,
            pagination_token=next_cursor,
            backlog_stop_timestamp=backlog_stop,
            backlog_oldest_timestamp=backlog_oldest,
            total_items_processed=(existing.total_items_processed if existing else 0)
            + items_processed,
            updated_at=datetime.now(timezone.utc),
            **carried,
        )

    def with_tracked_ids(
        self, checkpoint: CheckpointBase, field: str, ids: Iterable[str]
    ) -> CheckpointBase:
        """Embed an id set (e.g. already-enriched threads) into a checkpoint."""
        if field not in type(checkpoint).model_fields:
            raise InvalidConfig(f"{type(checkpoint).__name__} has no field {field!r}")
        tracked = cap_tracked_ids(list(dict.fromkeys(ids)), self._max_tracked_ids)
        return checkpoint.model_copy(
            update={field: tracked, "updated_at": datetime.now(timezone.utc)}
        )

    async def flush(self, partial: CheckpointBase) -> None:
        if self._flush_hook is None:
            return
        try:
            await self._flush_hook(partial)
        except Exception as e:
            logger.warning("Mid-run checkpoint flush failed: %s", e)
            return
        self.flush_count += 1
        logger.debug("Flushed partial checkpoint (%d so far)", self.flush_count)
