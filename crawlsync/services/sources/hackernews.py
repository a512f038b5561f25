"""Hacker News stories and comments via the Algolia HN Search API.

Uses ``search_by_date`` so hits arrive newest-first; the cursor is the
Algolia page number. Popular link stories without a text body get the
linked article's text attached once, tracked in ``processed_story_ids``.
"""

import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import urlparse

from crawlsync.schemas.checkpoints import HackerNewsCheckpoint
from crawlsync.schemas.options import HackerNewsOptions
from crawlsync.services.collector.base import (
    ContentItem,
    EnrichmentOutcome,
    EnrichmentPlan,
    FetchContext,
    Ordering,
    PageResult,
    SourceStrategy,
)
from crawlsync.services.collector.errors import ClientError, Forbidden, NotFound, ParseError
from crawlsync.services.text import extract_article_text

logger = logging.getLogger("crawlsync.sources.hackernews")

HN_SEARCH_API = "https://hn.algolia.com/api/v1"
HN_ITEM_URL = "https://news.ycombinator.com/item?id={}"
PAGE_SIZE = 100
CONTENT_FETCH_TIMEOUT = 5.0
CONTENT_FETCH_DELAY = 2.0
MAX_CONTENT_CHARS = 2000


def build_search_params(options: HackerNewsOptions, cursor: str | None, lookback_start: datetime | None) -> dict:
    params = {
        "query": options.search_query,
        "tags": options.content_type,
        "hitsPerPage": PAGE_SIZE,
        "page": int(cursor) if cursor else 0,
    }
    if lookback_start is not None:
        params["numericFilters"] = f"created_at_i>{int(lookback_start.timestamp())}"
    return params


async def fetch_page(ctx: FetchContext, cursor: str | None) -> PageResult:
    params = build_search_params(ctx.options, cursor, ctx.lookback_start)
    data = await ctx.limiter.get_json(ctx.client, f"{HN_SEARCH_API}/search_by_date", params=params)

    hits = data.get("hits", [])
    page = data.get("page", 0)
    has_next = page < data.get("nbPages", 0) - 1 and len(hits) > 0
    return PageResult(
        items=hits,
        next_cursor=str(page + 1) if has_next else None,
        raw_count=len(hits),
    )


def _created_at(hit: dict) -> datetime:
    created = hit.get("created_at_i")
    if created is None:
        raise ParseError(f"HN hit {hit.get('objectID')!r} has no created_at_i")
    return datetime.fromtimestamp(int(created), tz=timezone.utc)


def story_type(tags: list[str]) -> str:
    for tag in ("ask_hn", "show_hn", "poll"):
        if tag in tags:
            return tag
    return "story"


def transform_story(hit: dict) -> ContentItem:
    story_id = int(hit["objectID"])
    tags = hit.get("_tags", [])
    points = hit.get("points") or 0
    return ContentItem(
        external_id=f"hn_story_{story_id}",
        title=hit.get("title") or "",
        content=(hit.get("story_text") or "").strip(),
        author=hit.get("author", ""),
        url=HN_ITEM_URL.format(story_id),
        published_at=_created_at(hit),
        score=float(points),
        metadata={
            "score": points,
            "reply_count": hit.get("num_comments") or 0,
            "type": "story",
            "story_type": story_type(tags),
            "tags": tags,
            "external_url": hit.get("url"),
            "created_at_i": hit.get("created_at_i"),
        },
    )


def comment_parent_id(hit: dict) -> str | None:
    parent_id = hit.get("parent_id")
    story_id = hit.get("story_id")
    if parent_id and story_id and parent_id != story_id:
        return f"hn_comment_{parent_id}"
    if story_id:
        return f"hn_story_{story_id}"
    return None


def transform_comment(hit: dict) -> ContentItem:
    comment_id = int(hit["objectID"])
    return ContentItem(
        external_id=f"hn_comment_{comment_id}",
        content=hit.get("comment_text") or "",
        author=hit.get("author", ""),
        url=HN_ITEM_URL.format(comment_id),
        published_at=_created_at(hit),
        score=0.0,
        parent_external_id=comment_parent_id(hit),
        metadata={
            "type": "comment",
            "comment_id": comment_id,
            "story_id": hit.get("story_id"),
            "parent_id": hit.get("parent_id"),
            "created_at_i": hit.get("created_at_i"),
            "tags": hit.get("_tags", []),
        },
    )


def transform(hit: dict, options: HackerNewsOptions) -> ContentItem:
    if options.content_type == "comment":
        return transform_comment(hit)
    return transform_story(hit)


# --- Linked article content ---


def content_qualifies(item: ContentItem, options: HackerNewsOptions) -> bool:
    if options.content_type == "comment" or item.content:
        return False
    external_url = item.metadata.get("external_url")
    if not external_url or "news.ycombinator.com" in urlparse(external_url).netloc:
        return False
    return (item.metadata.get("score") or 0) >= options.min_points_for_content


async def fetch_linked_content(ctx: FetchContext, item: ContentItem) -> EnrichmentOutcome | None:
    url = item.metadata["external_url"]
    try:
        resp = await ctx.limiter.request(
            ctx.client,
            "GET",
            url,
            headers={"Accept": "text/html,application/xhtml+xml"},
            timeout=CONTENT_FETCH_TIMEOUT,
        )
    except (NotFound, Forbidden, ClientError) as e:
        # Dead or walled link: nothing to attach, and no point asking again.
        logger.info("No content for %s (%s)", url, e.kind)
        return None

    if "text/html" not in resp.headers.get("content-type", ""):
        return None

    text = extract_article_text(resp.text, max_chars=MAX_CONTENT_CHARS)
    if text is None:
        return None

    logger.info("Fetched external content for %s from %s", item.external_id, url)
    return EnrichmentOutcome(
        content=text,
        metadata={"fetched_content": True, "original_url": url},
    )


STRATEGY = SourceStrategy(
    kind="hackernews",
    fetch_page=fetch_page,
    transform=transform,
    checkpoint_model=HackerNewsCheckpoint,
    ordering=Ordering.DESCENDING,
    rate_limit_seconds=1.0,
    max_pages=50,
    recommended_interval=timedelta(hours=1),
    enrichment=EnrichmentPlan(
        qualifies=content_qualifies,
        fetch=fetch_linked_content,
        done_field="processed_story_ids",
        budget=lambda options: options.max_content_fetches,
        timeout_seconds=CONTENT_FETCH_TIMEOUT + CONTENT_FETCH_DELAY,
        delay_seconds=CONTENT_FETCH_DELAY,
    ),
)
