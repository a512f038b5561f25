import dataclasses
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import httpx
import pytest

from crawlsync.schemas.checkpoints import RedditCheckpoint
from crawlsync.services.collector.base import (
    ContentItem,
    FetchContext,
    Ordering,
    PageResult,
    SourceStrategy,
)
from crawlsync.services.collector.errors import ParseError
from crawlsync.services.collector.rate_limit import RateLimiter

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def raw_item(item_id: str, published_at: datetime, score: float = 0.0, **extra) -> dict:
    return {"id": item_id, "published_at": published_at, "score": score, **extra}


def transform_raw(raw: dict, options) -> ContentItem:
    if raw.get("broken"):
        raise ParseError(f"broken item {raw['id']}")
    return ContentItem(
        external_id=raw["id"],
        content=raw.get("content", f"content of {raw['id']}"),
        author="tester",
        url=f"https://example.test/{raw['id']}",
        published_at=raw["published_at"],
        score=raw.get("score", 0.0),
        parent_external_id=raw.get("parent"),
        metadata=dict(raw.get("metadata", {})),
    )


def descending_pages(sizes: list[int], start: datetime = T0, prefix: str = "i") -> list[list[dict]]:
    """Pages of raw items, newest first, one minute apart."""
    pages, n = [], 0
    for size in sizes:
        page = []
        for _ in range(size):
            page.append(raw_item(f"{prefix}{n}", start - timedelta(minutes=n)))
            n += 1
        pages.append(page)
    return pages


class FakeListing:
    """In-memory paginated listing; the cursor is the page index."""

    def __init__(self, pages: list[list[dict]]):
        self.pages = pages
        self.calls: list[str | None] = []

    async def fetch_page(self, ctx: FetchContext, cursor: str | None) -> PageResult:
        self.calls.append(cursor)
        await ctx.limiter.wait()
        index = int(cursor) if cursor else 0
        items = self.pages[index] if index < len(self.pages) else []
        next_cursor = str(index + 1) if index + 1 < len(self.pages) else None
        return PageResult(items=items, next_cursor=next_cursor, raw_count=len(items))


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def options():
    return SimpleNamespace(source="reddit", lookback_days=None, max_pages=None)


@pytest.fixture
def make_strategy():
    def _make(pages, **overrides):
        listing = FakeListing(pages)
        fields = dict(
            kind="reddit",
            fetch_page=listing.fetch_page,
            transform=transform_raw,
            checkpoint_model=RedditCheckpoint,
            ordering=Ordering.DESCENDING,
            rate_limit_seconds=0.0,
        )
        fields.update(overrides)
        return listing, SourceStrategy(**fields)

    return _make


@pytest.fixture
def make_ctx(options):
    def _make(checkpoint=None, client=None, opts=None, lookback_start=None):
        return FetchContext(
            client=client,
            options=opts or options,
            secrets={},
            checkpoint=checkpoint,
            limiter=RateLimiter(0.0, source="test"),
            lookback_start=lookback_start,
        )

    return _make


@pytest.fixture
async def mock_client():
    """Build an AsyncClient whose requests are answered by ``handler``."""
    clients = []

    def _make(handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.aclose()


def without_pacing(strategy):
    """Same source with every delay removed, for fast tests."""
    changes = {"rate_limit_seconds": 0.0}
    if strategy.enrichment is not None:
        changes["enrichment"] = dataclasses.replace(strategy.enrichment, delay_seconds=0.0)
    return dataclasses.replace(strategy, **changes)


@pytest.fixture
async def db_session(tmp_path):
    from crawlsync.database import init_models, make_engine, make_session_factory

    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}")
    await init_models(engine)
    session_factory = make_session_factory(engine)
    async with session_factory() as session:
        yield session
    await engine.dispose()
