import logging
from dataclasses import dataclass, field

from crawlsync.schemas.checkpoints import CheckpointBase
from crawlsync.services.collector.base import (
    ContentItem,
    FetchContext,
    Ordering,
    SourceStrategy,
)
from crawlsync.services.collector.checkpoint import CheckpointManager
from crawlsync.services.collector.errors import ParseError

logger = logging.getLogger("crawlsync.collector.pagination")


@dataclass
class PaginationOutcome:
    items: list[ContentItem] = field(default_factory=list)
    final_cursor: str | None = None
    pages_fetched: int = 0
    reached_checkpoint: bool = False
    reached_lookback: bool = False
    truncated: bool = False
    items_filtered: int = 0
    parse_errors: int = 0
    started_from_head: bool = True

    @property
    def newest(self) -> ContentItem | None:
        return max(self.items, key=lambda item: item.published_at, default=None)

    @property
    def oldest(self) -> ContentItem | None:
        return min(self.items, key=lambda item: item.published_at, default=None)


class PaginationDriver:
    """Walks a source page by page until a termination rule fires.

    Pages are fetched strictly one after another. Pacing is applied at the
    call-site: fetchers issue their requests through ``ctx.limiter``.

    A checkpoint with a ``pagination_token`` means an earlier walk was cut
    short; the walk resumes from that token and stops at the backlog's own
    ``backlog_stop_timestamp``. Otherwise it starts at the head and stops at
    ``last_timestamp``.

    Termination rules, checked after each page:
      - the fetcher returned no next cursor (listing exhausted)
      - the page was empty
      - a DESCENDING source produced an item at or before the stop point,
        or before the lookback window
      - ``max_pages`` pages were fetched; this is a logged truncation, not
        an error, and the unfetched cursor is kept so the next run resumes
    """

    def __init__(self, strategy: SourceStrategy, manager: CheckpointManager | None = None) -> None:
        self._strategy = strategy
        self._manager = manager

    async def run(
        self,
        ctx: FetchContext,
        checkpoint: CheckpointBase | None,
        max_pages: int,
    ) -> PaginationOutcome:
        strategy = self._strategy
        cursor = checkpoint.pagination_token if checkpoint is not None else None
        ordering = strategy.ordering_for(ctx.options)
        descending = ordering is Ordering.DESCENDING

        outcome = PaginationOutcome(started_from_head=cursor is None)
        stop_at = seen_below = None
        if checkpoint is not None and descending:
            if outcome.started_from_head:
                stop_at = checkpoint.last_timestamp
            else:
                stop_at = checkpoint.backlog_stop_timestamp
                seen_below = checkpoint.backlog_oldest_timestamp
        floor = ctx.lookback_start

        page_count = 0
        while page_count < max_pages:
            page = await strategy.fetch_page(ctx, cursor)
            outcome.pages_fetched += 1
            kept = 0

            for raw in page.items:
                if not strategy.keeps(raw, ctx.options):
                    outcome.items_filtered += 1
                    continue

                try:
                    item = strategy.transform(raw, ctx.options)
                except ParseError as e:
                    outcome.parse_errors += 1
                    logger.warning("source=%s skipped unparseable item: %s", strategy.kind, e)
                    continue
                except (KeyError, ValueError, TypeError) as e:
                    outcome.parse_errors += 1
                    logger.warning("source=%s skipped malformed item: %r", strategy.kind, e)
                    continue

                if stop_at is not None and item.published_at <= stop_at:
                    outcome.reached_checkpoint = True
                    break

                # Emitted by an earlier run, pushed onto this page by new arrivals
                if seen_below is not None and item.published_at > seen_below:
                    outcome.items_filtered += 1
                    continue

                if floor is not None and item.published_at < floor:
                    if descending:
                        outcome.reached_lookback = True
                        break
                    outcome.items_filtered += 1
                    continue

                outcome.items.append(item)
                kept += 1

            logger.info(
                "source=%s page=%d raw=%d kept=%d next=%s",
                strategy.kind,
                outcome.pages_fetched,
                page.raw_count,
                kept,
                "yes" if page.next_cursor else "no",
            )

            if (
                page.next_cursor is None
                or outcome.reached_checkpoint
                or outcome.reached_lookback
                or page.raw_count == 0
            ):
                break

            cursor = page.next_cursor
            page_count += 1
            if strategy.flush_every_page and self._manager is not None:
                await self._flush_progress(checkpoint, outcome, cursor)
        else:
            outcome.truncated = True
            outcome.final_cursor = cursor
            logger.info(
                "source=%s stopped at max_pages=%d with more pages pending",
                strategy.kind,
                max_pages,
            )

        if outcome.reached_checkpoint:
            logger.info("source=%s reached checkpoint at %s", strategy.kind, stop_at)
        return outcome

    async def _flush_progress(
        self, checkpoint: CheckpointBase | None, outcome: PaginationOutcome, cursor: str
    ) -> None:
        """Save the walk so far as if it had been truncated before ``cursor``."""
        partial = self._manager.advance(
            checkpoint,
            outcome.newest,
            cursor,
            len(outcome.items),
            oldest_item=outcome.oldest,
        )
        await self._manager.flush(partial)
