"""Reddit posts and comments via the public JSON listings.

Listings are requested newest-first (``new``, ``sort=new``, ``comments``),
so the source is DESCENDING and each run walks from the head down to the
checkpoint, or resumes a cut-off backlog from its ``after`` token. Progress
is flushed after every page. Busy posts get their reply thread fetched
once, tracked in ``processed_thread_ids``.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

import httpx

from crawlsync.config import settings
from crawlsync.schemas.checkpoints import RedditCheckpoint
from crawlsync.schemas.options import RedditOptions
from crawlsync.services.collector.base import (
    ContentItem,
    EnrichmentOutcome,
    EnrichmentPlan,
    FetchContext,
    Ordering,
    PageResult,
    SourceStrategy,
)
from crawlsync.services.collector.errors import ParseError

logger = logging.getLogger("crawlsync.sources.reddit")

REDDIT_BASE = "https://www.reddit.com"
REDDIT_OAUTH_BASE = "https://oauth.reddit.com"
PAGE_SIZE = 100
MAX_THREAD_REPLIES = 50
REMOVED_BODIES = {"[removed]", "[deleted]"}


def _base_url(secrets: Mapping[str, str]) -> str:
    return REDDIT_OAUTH_BASE if secrets.get("REDDIT_ACCESS_TOKEN") else REDDIT_BASE


def open_client(options: RedditOptions, secrets: Mapping[str, str]) -> httpx.AsyncClient:
    headers = {"User-Agent": secrets.get("REDDIT_USER_AGENT") or settings.user_agent}
    token = secrets.get("REDDIT_ACCESS_TOKEN")
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(
        timeout=settings.request_timeout_seconds,
        follow_redirects=True,
        headers=headers,
    )


def build_listing_request(
    options: RedditOptions, cursor: str | None, base: str = REDDIT_BASE
) -> tuple[str, dict]:
    params: dict[str, Any] = {"limit": PAGE_SIZE, "raw_json": 1}
    if cursor:
        params["after"] = cursor

    if options.content_type == "comments":
        return f"{base}/r/{options.subreddit}/comments.json", params

    if options.search_terms:
        params["q"] = " OR ".join(options.search_terms)
        params["sort"] = "new"
        if options.subreddit:
            params["restrict_sr"] = "on"
            return f"{base}/r/{options.subreddit}/search.json", params
        return f"{base}/search.json", params

    return f"{base}/r/{options.subreddit}/new.json", params


async def fetch_page(ctx: FetchContext, cursor: str | None) -> PageResult:
    url, params = build_listing_request(ctx.options, cursor, _base_url(ctx.secrets))
    data = await ctx.limiter.get_json(ctx.client, url, params=params)

    listing = data.get("data", {}) if isinstance(data, dict) else {}
    children = listing.get("children", [])
    return PageResult(
        items=[child.get("data", {}) for child in children],
        next_cursor=listing.get("after") or None,
        raw_count=len(children),
    )


def keep_item(raw: dict, options: RedditOptions) -> bool:
    """Drop deleted/removed items, crossposts, and off-topic search hits."""
    if raw.get("author") == "[deleted]":
        return False

    if options.content_type == "comments":
        return raw.get("body") not in REMOVED_BODIES

    if raw.get("crosspost_parent"):
        return False
    if raw.get("selftext") in REMOVED_BODIES:
        return False

    # Subreddit-scoped search also matches on flair and comments; keep only
    # posts that mention a term themselves.
    if options.subreddit and options.search_terms:
        haystack = f"{raw.get('title') or ''} {raw.get('selftext') or ''}".lower()
        return any(term.lower() in haystack for term in options.search_terms)
    return True


def _created_at(raw: dict) -> datetime:
    created = raw.get("created_utc")
    if created is None:
        raise ParseError(f"Reddit item {raw.get('id')!r} has no created_utc")
    return datetime.fromtimestamp(float(created), tz=timezone.utc)


def comment_parent_id(parent_fullname: str | None) -> str | None:
    """Map a ``t1_``/``t3_`` fullname onto our external ids."""
    if not parent_fullname:
        return None
    if parent_fullname.startswith("t1_"):
        return f"comment_{parent_fullname[3:]}"
    if parent_fullname.startswith("t3_"):
        return parent_fullname[3:]
    return None


def transform_post(raw: dict) -> ContentItem:
    engagement = {
        "score": raw.get("score", 0),
        "upvotes": raw.get("ups", 0),
        "downvotes": raw.get("downs", 0),
        "reply_count": raw.get("num_comments", 0),
    }
    return ContentItem(
        external_id=raw["id"],
        title=raw.get("title", ""),
        content=(raw.get("selftext") or "").strip(),
        author=raw.get("author", ""),
        url=f"https://reddit.com{raw.get('permalink', '')}",
        published_at=_created_at(raw),
        score=float(raw.get("score") or 0),
        metadata={**engagement, "subreddit": raw.get("subreddit", "")},
    )


def transform_comment(raw: dict) -> ContentItem:
    post_id = (raw.get("link_id") or "").removeprefix("t3_")
    return ContentItem(
        external_id=f"comment_{raw['id']}",
        content=raw.get("body", ""),
        author=raw.get("author", ""),
        url=f"https://reddit.com{raw.get('permalink', '')}",
        published_at=_created_at(raw),
        score=float(raw.get("score") or 0),
        parent_external_id=comment_parent_id(raw.get("parent_id")),
        metadata={
            "score": raw.get("score", 0),
            "upvotes": raw.get("ups", 0),
            "downvotes": raw.get("downs", 0),
            "post_id": post_id,
            "parent_id": raw.get("parent_id"),
            "depth": raw.get("depth", 0),
        },
    )


def transform(raw: dict, options: RedditOptions) -> ContentItem:
    if options.content_type == "comments":
        return transform_comment(raw)
    return transform_post(raw)


# --- Reply threads ---


def thread_qualifies(item: ContentItem, options: RedditOptions) -> bool:
    if options.content_type != "posts":
        return False
    replies = item.metadata.get("reply_count", 0) or 0
    if replies == 0:
        return False
    return (
        replies >= options.min_comments_for_thread
        or (item.metadata.get("score", 0) or 0) >= options.min_score_for_thread
    )


def _walk_comments(children: list, out: list[dict], limit: int) -> None:
    for child in children:
        if len(out) >= limit:
            return
        if child.get("kind") != "t1":
            continue  # "more" stubs need another request each; skip them
        data = child.get("data", {})
        if data.get("author") != "[deleted]" and data.get("body") not in REMOVED_BODIES:
            out.append(data)
        replies = data.get("replies")
        if isinstance(replies, dict):
            _walk_comments(replies.get("data", {}).get("children", []), out, limit)


async def fetch_thread(ctx: FetchContext, item: ContentItem) -> EnrichmentOutcome:
    url = f"{_base_url(ctx.secrets)}/comments/{item.external_id}.json"
    data = await ctx.limiter.get_json(
        ctx.client, url, params={"limit": MAX_THREAD_REPLIES, "sort": "top", "raw_json": 1}
    )
    if not isinstance(data, list) or len(data) < 2:
        return EnrichmentOutcome()

    raw_comments: list[dict] = []
    _walk_comments(data[1].get("data", {}).get("children", []), raw_comments, MAX_THREAD_REPLIES)

    replies = []
    for raw in raw_comments:
        try:
            reply = transform_comment(raw)
        except (ParseError, KeyError, ValueError) as e:
            logger.debug("Skipping malformed reply in thread %s: %s", item.external_id, e)
            continue
        reply.metadata["thread_id"] = item.external_id
        replies.append(reply)
    return EnrichmentOutcome(replies=replies)


STRATEGY = SourceStrategy(
    kind="reddit",
    fetch_page=fetch_page,
    transform=transform,
    checkpoint_model=RedditCheckpoint,
    ordering=Ordering.DESCENDING,
    filter_item=keep_item,
    open_client=open_client,
    rate_limit_seconds=1.0,  # 60 req/min
    max_pages=50,
    recommended_interval=timedelta(minutes=30),
    flush_every_page=True,
    enrichment=EnrichmentPlan(
        qualifies=thread_qualifies,
        fetch=fetch_thread,
        done_field="processed_thread_ids",
        budget=lambda options: options.max_threads_to_fetch,
        timeout_seconds=15.0,
        delay_seconds=1.0,
    ),
)
