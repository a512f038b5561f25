import logging
import uuid
from datetime import datetime, timezone
from typing import Mapping

import httpx
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from crawlsync.models.sync_run import SyncRun
from crawlsync.schemas.options import parse_options
from crawlsync.services.checkpoint_store import CheckpointStore
from crawlsync.services.collector.base import CollectionResult
from crawlsync.services.collector.runner import run

logger = logging.getLogger("crawlsync.sync_manager")


async def _update_run(db: AsyncSession, run_id: uuid.UUID, **values) -> None:
    await db.execute(update(SyncRun).where(SyncRun.id == run_id).values(**values))
    await db.commit()


async def execute_sync(
    source_key: str,
    db: AsyncSession,
    secrets: Mapping[str, str],
    client: httpx.AsyncClient | None = None,
) -> CollectionResult:
    """Run one configured source end to end and persist its new checkpoint.

    This is the orchestration function called by Celery tasks and the CLI.
    A ``SyncRun`` row records progress; on failure it keeps the error kind
    and any retry hint, and the error is re-raised for the caller to act on.
    """
    store = CheckpointStore(db)
    source = await store.get_source(source_key)

    sync_run = SyncRun(
        source_key=source_key,
        status="running",
        started_at=datetime.now(timezone.utc),
    )
    db.add(sync_run)
    await db.commit()
    run_id = sync_run.id

    try:
        options = parse_options({**source.options, "source": source.kind})
        checkpoint = await store.load(source_key)

        result = await run(
            options,
            checkpoint,
            secrets,
            client=client,
            flush=store.flush_hook(source_key),
        )
        await store.save(source_key, result.checkpoint)

        meta = result.metadata
        await _update_run(
            db,
            run_id,
            status="completed",
            items_found=meta.items_found,
            items_skipped=meta.items_skipped,
            pages_fetched=meta.pages_fetched,
            truncated=meta.truncated,
            next_recommended_run_at=meta.next_recommended_run_at,
            completed_at=datetime.now(timezone.utc),
        )
        logger.info(
            "Sync %s completed: found=%d skipped=%d kept=%d",
            source_key,
            meta.items_found,
            meta.items_skipped,
            len(result.contents),
        )
        return result

    except Exception as e:
        logger.error("Sync %s failed: %s", source_key, e)
        # The session may hold a failed flush; clear it before recording.
        await db.rollback()
        await _update_run(
            db,
            run_id,
            status="failed",
            error_kind=getattr(e, "kind", "internal_error"),
            error_message=str(e),
            retry_after_seconds=getattr(e, "retry_after", None),
            completed_at=datetime.now(timezone.utc),
        )
        raise
