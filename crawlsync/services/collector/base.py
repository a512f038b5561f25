"""Shapes shared by the engine and the sources.

A source is not a subclass: it is a ``SourceStrategy`` value bundling the
functions that know how to fetch one page and turn raw items into
``ContentItem`` records, plus the declarations the engine needs (ordering
guarantee, rate limit, optional enrichment plan, per-page flushing).
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

import httpx

from crawlsync.config import settings
from crawlsync.schemas.checkpoints import CheckpointBase, dump_checkpoint

ParentMap = dict[str, str]


class Ordering(Enum):
    """Whether a listing yields items newest-first by ``published_at``."""

    DESCENDING = "descending"
    UNORDERED = "unordered"


@dataclass
class ContentItem:
    """A single normalized piece of content."""

    external_id: str
    content: str
    author: str
    url: str
    published_at: datetime
    title: str | None = None
    score: float = 0.0
    parent_external_id: str | None = None
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["published_at"] = self.published_at.isoformat()
        return data


@dataclass
class PageResult:
    items: list[Any]
    next_cursor: str | None
    raw_count: int


@dataclass
class RunMetadata:
    items_found: int
    items_skipped: int
    next_recommended_run_at: datetime
    pages_fetched: int = 0
    reached_checkpoint: bool = False
    truncated: bool = False
    items_filtered: int = 0
    parse_errors: int = 0
    enriched: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["next_recommended_run_at"] = self.next_recommended_run_at.isoformat()
        return data


@dataclass
class CollectionResult:
    contents: list[ContentItem]
    checkpoint: CheckpointBase
    parent_map: ParentMap
    metadata: RunMetadata

    def to_dict(self) -> dict:
        return {
            "contents": [c.to_dict() for c in self.contents],
            "checkpoint": dump_checkpoint(self.checkpoint),
            "parent_map": dict(self.parent_map),
            "metadata": self.metadata.to_dict(),
        }


@dataclass
class FetchContext:
    """Everything a fetcher may use during one run.

    ``secrets`` is passed through to fetchers untouched and must never be
    logged.
    """

    client: httpx.AsyncClient
    options: Any
    secrets: Mapping[str, str]
    checkpoint: CheckpointBase | None
    limiter: Any
    lookback_start: datetime | None = None


@dataclass
class EnrichmentOutcome:
    """What one expensive follow-up fetch produced for a candidate."""

    content: str | None = None
    replies: list[ContentItem] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class EnrichmentPlan:
    qualifies: Callable[[ContentItem, Any], bool]
    fetch: Callable[[FetchContext, ContentItem], Awaitable[EnrichmentOutcome | None]]
    done_field: str
    budget: Callable[[Any], int]
    rank: Callable[[ContentItem], float] = lambda item: item.score
    timeout_seconds: float = 10.0
    delay_seconds: float = 1.0


def default_client(options: Any, secrets: Mapping[str, str]) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=settings.request_timeout_seconds,
        follow_redirects=True,
        headers={"User-Agent": settings.user_agent},
    )


@dataclass(frozen=True)
class SourceStrategy:
    kind: str
    fetch_page: Callable[[FetchContext, str | None], Awaitable[PageResult]]
    transform: Callable[[Any, Any], ContentItem]
    checkpoint_model: type[CheckpointBase]
    ordering: Ordering | Callable[[Any], Ordering]
    filter_item: Callable[[Any, Any], bool] | None = None
    parent_of: Callable[[ContentItem, Any], str | None] | None = None
    checkpoint_extras: Callable[[CheckpointBase | None, list[ContentItem], Any], dict] | None = None
    open_client: Callable[[Any, Mapping[str, str]], httpx.AsyncClient] = default_client
    rate_limit_seconds: float = 1.0
    max_pages: int | None = None
    recommended_interval: timedelta = timedelta(hours=1)
    enrichment: EnrichmentPlan | None = None
    flush_every_page: bool = False

    def ordering_for(self, options: Any) -> Ordering:
        if isinstance(self.ordering, Ordering):
            return self.ordering
        return self.ordering(options)

    def keeps(self, raw: Any, options: Any) -> bool:
        return self.filter_item is None or self.filter_item(raw, options)

    def parent_id(self, item: ContentItem, options: Any) -> str | None:
        if self.parent_of is None:
            return item.parent_external_id
        return self.parent_of(item, options)

    def max_pages_for(self, options: Any) -> int:
        requested = getattr(options, "max_pages", None)
        return requested or self.max_pages or settings.default_max_pages

