"""One sync of one source: the engine's entry point.

    result = await run(options, checkpoint, secrets)

Control flow: paginate -> dedupe -> enrich (optional) -> dedupe replies ->
link parents -> sort newest first -> derive the next checkpoint.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

import httpx

from crawlsync.config import settings
from crawlsync.schemas.checkpoints import CheckpointBase
from crawlsync.services.collector.base import (
    CollectionResult,
    FetchContext,
    RunMetadata,
    SourceStrategy,
)
from crawlsync.services.collector.checkpoint import CheckpointManager, FlushHook
from crawlsync.services.collector.dedup import Deduplicator
from crawlsync.services.collector.enrichment import EnrichmentScheduler
from crawlsync.services.collector.linking import ParentLinker
from crawlsync.services.collector.pagination import PaginationDriver
from crawlsync.services.collector.rate_limit import RateLimiter
from crawlsync.services.collector.registry import get_source

logger = logging.getLogger("crawlsync.collector.runner")


async def run(
    options: Any,
    checkpoint: CheckpointBase | None = None,
    secrets: Mapping[str, str] | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    flush: FlushHook | None = None,
    strategy: SourceStrategy | None = None,
) -> CollectionResult:
    """Collect new items for one configured source.

    ``client`` lets the caller supply the run-scoped HTTP resource; when it
    is omitted the source opens its own and it is closed on every exit path.
    ``flush`` receives partial checkpoints during expensive enrichment, and
    after every page for sources that ask for it.
    """
    strategy = strategy or get_source(options.source)
    manager = CheckpointManager(strategy.checkpoint_model, flush_hook=flush)
    manager.check(checkpoint)
    secrets = secrets or {}

    if client is not None:
        return await _collect(strategy, options, checkpoint, secrets, client, manager)

    async with strategy.open_client(options, secrets) as owned_client:
        return await _collect(strategy, options, checkpoint, secrets, owned_client, manager)


def _lookback_start(options: Any) -> datetime | None:
    days = getattr(options, "lookback_days", None)
    if not days:
        return None
    return datetime.now(timezone.utc) - timedelta(days=days)


async def _collect(
    strategy: SourceStrategy,
    options: Any,
    checkpoint: CheckpointBase | None,
    secrets: Mapping[str, str],
    client: httpx.AsyncClient,
    manager: CheckpointManager,
) -> CollectionResult:
    ctx = FetchContext(
        client=client,
        options=options,
        secrets=secrets,
        checkpoint=checkpoint,
        limiter=RateLimiter(strategy.rate_limit_seconds, source=strategy.kind),
        lookback_start=_lookback_start(options),
    )

    outcome = await PaginationDriver(strategy, manager).run(
        ctx, checkpoint, strategy.max_pages_for(options)
    )

    dedup = Deduplicator()
    contents, skipped = dedup.dedupe(outcome.items)
    newest = max(contents, key=lambda item: item.published_at, default=None)
    oldest = min(contents, key=lambda item: item.published_at, default=None)
    page_items = len(contents)
    found = len(outcome.items)

    plan = strategy.enrichment
    report = None
    if plan is not None:
        already_done = getattr(checkpoint, plan.done_field, None) or []
        scheduler = EnrichmentScheduler(manager)
        report = await scheduler.enrich(ctx, contents, plan, already_done, checkpoint)
        replies, reply_dupes = dedup.dedupe(report.replies)
        contents.extend(replies)
        found += len(report.replies)
        skipped += reply_dupes

    parent_map = ParentLinker.link(contents, lambda item: strategy.parent_id(item, options))
    contents.sort(key=lambda item: item.published_at, reverse=True)

    extras = strategy.checkpoint_extras(checkpoint, contents, options) if strategy.checkpoint_extras else {}
    new_checkpoint = manager.advance(
        checkpoint, newest, outcome.final_cursor, len(contents), oldest_item=oldest, **extras
    )
    if report is not None:
        new_checkpoint = manager.with_tracked_ids(new_checkpoint, plan.done_field, report.done)

    now = datetime.now(timezone.utc)
    if outcome.truncated:
        next_run = now + timedelta(seconds=settings.backlog_rerun_delay_seconds)
    else:
        next_run = now + strategy.recommended_interval

    metadata = RunMetadata(
        items_found=found,
        items_skipped=skipped,
        next_recommended_run_at=next_run,
        pages_fetched=outcome.pages_fetched,
        reached_checkpoint=outcome.reached_checkpoint,
        truncated=outcome.truncated,
        items_filtered=outcome.items_filtered,
        parse_errors=outcome.parse_errors,
        enriched=report.succeeded if report is not None else 0,
    )
    logger.info(
        "source=%s run complete: found=%d kept=%d page_items=%d pages=%d truncated=%s",
        strategy.kind,
        found,
        len(contents),
        page_items,
        outcome.pages_fetched,
        outcome.truncated,
    )
    return CollectionResult(
        contents=contents,
        checkpoint=new_checkpoint,
        parent_map=parent_map,
        metadata=metadata,
    )
