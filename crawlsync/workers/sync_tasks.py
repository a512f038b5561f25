import asyncio
import logging

from celery.signals import setup_logging

from crawlsync.config import configure_logging, settings
from crawlsync.services.collector.errors import CollectorError, RateLimited
from crawlsync.workers.celery_app import celery

logger = logging.getLogger("crawlsync.workers.sync")


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging()


def _run_async(coro):
    """Run an async function from a sync Celery task."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def retry_countdown(error: BaseException) -> float | None:
    """Seconds until a failed sync should be retried, or None to give up."""
    if isinstance(error, RateLimited):
        if error.retry_after is not None:
            return max(error.retry_after, 1.0)
        return float(settings.default_rate_limit_retry_seconds)
    if isinstance(error, CollectorError) and error.retryable:
        return float(settings.transient_retry_delay_seconds)
    return None


@celery.task(
    name="crawlsync.workers.sync_tasks.run_sync_job",
    bind=True,
    max_retries=settings.sync_max_retries,
)
def run_sync_job(self, source_key: str):
    """Sync one source in the background and return its run metadata.

    Rate limits are retried after the server's hint, other retryable
    failures after a fixed delay; everything else fails the task.
    """
    from crawlsync.database import make_engine, make_session_factory
    from crawlsync.services.sync_manager import execute_sync

    logger.info("Starting sync %s", source_key)

    async def _execute():
        engine = make_engine()
        session_factory = make_session_factory(engine)
        async with session_factory() as session:
            try:
                result = await execute_sync(source_key, session, settings.source_secrets())
                return result.metadata.to_dict()
            finally:
                await engine.dispose()

    try:
        return _run_async(_execute())
    except CollectorError as exc:
        countdown = retry_countdown(exc)
        if countdown is None:
            logger.error("Sync %s failed permanently (%s): %s", source_key, exc.kind, exc)
            raise
        logger.warning("Sync %s failed (%s), retrying in %.0fs", source_key, exc.kind, countdown)
        raise self.retry(exc=exc, countdown=countdown)


@celery.task(name="crawlsync.workers.sync_tasks.sync_all_sources")
def sync_all_sources():
    """Queue one sync task per enabled source."""
    from sqlalchemy import select

    from crawlsync.database import make_engine, make_session_factory
    from crawlsync.models.sync_source import SyncSource

    async def _execute():
        engine = make_engine()
        session_factory = make_session_factory(engine)
        async with session_factory() as session:
            try:
                result = await session.execute(
                    select(SyncSource.key).where(SyncSource.enabled.is_(True))
                )
                return [row[0] for row in result.all()]
            finally:
                await engine.dispose()

    keys = _run_async(_execute())
    for key in keys:
        run_sync_job.delay(key)
    logger.info("Queued %d sync jobs", len(keys))
    return keys
