import logging

from crawlsync.services.collector.base import ContentItem

logger = logging.getLogger("crawlsync.collector.dedup")


class Deduplicator:
    """Collapses items sharing an ``external_id`` within one run.

    The seen set lives as long as the instance, so replies attached late by
    enrichment are checked against everything the pages already produced.
    First occurrence wins and input order is preserved.
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def __contains__(self, external_id: str) -> bool:
        return external_id in self._seen

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    def dedupe(self, items: list[ContentItem]) -> tuple[list[ContentItem], int]:
        unique: list[ContentItem] = []
        for item in items:
            if item.external_id in self._seen:
                continue
            self._seen.add(item.external_id)
            unique.append(item)

        skipped = len(items) - len(unique)
        if skipped:
            logger.debug("Dropped %d duplicate items", skipped)
        return unique, skipped
