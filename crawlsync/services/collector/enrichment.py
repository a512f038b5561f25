"""Bounded secondary pass over already-collected items.

Some sources attach expensive follow-up data to a few items: the linked
article for a popular story, the reply thread for a busy post. The pass is
capped by a budget, ranked by score, isolated per candidate, and idempotent
across runs through a "done" id set stored in the checkpoint.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from crawlsync.config import settings
from crawlsync.schemas.checkpoints import CheckpointBase
from crawlsync.services.collector.base import ContentItem, EnrichmentPlan, FetchContext
from crawlsync.services.collector.checkpoint import CheckpointManager
from crawlsync.services.collector.rate_limit import RateLimiter

logger = logging.getLogger("crawlsync.collector.enrichment")


@dataclass
class EnrichmentReport:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    replies: list[ContentItem] = field(default_factory=list)
    done: list[str] = field(default_factory=list)


class EnrichmentScheduler:
    def __init__(self, manager: CheckpointManager, flush_every: int | None = None) -> None:
        self._manager = manager
        self._flush_every = settings.checkpoint_flush_every if flush_every is None else flush_every

    @staticmethod
    def select(
        items: list[ContentItem],
        plan: EnrichmentPlan,
        options: Any,
        already_done: set[str],
    ) -> list[ContentItem]:
        """Qualifying, not-yet-done items, best first, capped at the budget."""
        candidates = [
            item
            for item in items
            if item.external_id not in already_done and plan.qualifies(item, options)
        ]
        candidates.sort(key=plan.rank, reverse=True)
        return candidates[: max(0, plan.budget(options))]

    async def enrich(
        self,
        ctx: FetchContext,
        items: list[ContentItem],
        plan: EnrichmentPlan,
        already_done: Iterable[str],
        checkpoint: CheckpointBase | None = None,
    ) -> EnrichmentReport:
        """Run the pass. Mutates ``items`` in place; replies are returned.

        ``checkpoint`` is the state the run started from. Mid-run flushes
        persist it with the growing done set only, so a crash repeats the
        cheap page walk but none of the completed expensive fetches.
        """
        done = list(dict.fromkeys(already_done))
        done_set = set(done)
        report = EnrichmentReport(done=done)

        selected = self.select(items, plan, ctx.options, done_set)
        if not selected:
            return report

        logger.info("Enriching %d of %d items", len(selected), len(items))
        ctx = dataclasses.replace(ctx, limiter=RateLimiter(plan.delay_seconds, source=ctx.limiter.source))
        flush_base = checkpoint if checkpoint is not None else self._manager.advance(None, None, None, 0)

        for item in selected:
            report.attempted += 1
            try:
                outcome = await asyncio.wait_for(plan.fetch(ctx, item), timeout=plan.timeout_seconds)
            except asyncio.TimeoutError:
                report.failed += 1
                logger.warning("Enrichment timed out for %s", item.external_id)
                continue
            except Exception as e:
                report.failed += 1
                logger.warning("Enrichment failed for %s: %s", item.external_id, e)
                continue

            if outcome is not None:
                if outcome.content:
                    item.content = outcome.content
                    item.metadata.update(outcome.metadata)
                    item.metadata["enriched"] = True
                for reply in outcome.replies:
                    if reply.parent_external_id is None:
                        reply.parent_external_id = item.external_id
                report.replies.extend(outcome.replies)

            done.append(item.external_id)
            done_set.add(item.external_id)
            report.succeeded += 1

            if self._flush_every and report.succeeded % self._flush_every == 0:
                await self._manager.flush(
                    self._manager.with_tracked_ids(flush_base, plan.done_field, done)
                )

        logger.info(
            "Enrichment finished: attempted=%d succeeded=%d failed=%d replies=%d",
            report.attempted,
            report.succeeded,
            report.failed,
            len(report.replies),
        )
        return report
