from typing import Callable

from crawlsync.services.collector.base import ContentItem, ParentMap


class ParentLinker:
    """Builds the child -> parent ``external_id`` map for a batch.

    Parents are not required to be in the batch: a comment's post may have
    been collected by an earlier run, or by a different source entirely. The
    map is exported for the sink to resolve against its own store.
    """

    @staticmethod
    def link(
        items: list[ContentItem],
        derive_parent_id: Callable[[ContentItem], str | None],
    ) -> ParentMap:
        parent_map: ParentMap = {}
        for item in items:
            parent_id = derive_parent_id(item)
            if parent_id and parent_id != item.external_id:
                parent_map[item.external_id] = parent_id
        return parent_map
