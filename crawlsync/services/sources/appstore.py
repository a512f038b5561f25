"""iOS App Store customer reviews from the public iTunes RSS feed.

The feed serves at most ten pages of fifty reviews, sorted most recent
first. The first entry of page one is the app itself, not a review.
"""

import logging
from datetime import datetime, timedelta

from crawlsync.schemas.checkpoints import AppStoreCheckpoint
from crawlsync.schemas.options import AppStoreOptions
from crawlsync.services.collector.base import (
    ContentItem,
    FetchContext,
    Ordering,
    PageResult,
    SourceStrategy,
)
from crawlsync.services.collector.errors import ClientError, NotFound, ParseError, UpstreamServerError

logger = logging.getLogger("crawlsync.sources.appstore")

FEED_URL = "https://itunes.apple.com/{country}/rss/customerreviews/page={page}/id={app_id}/sortby=mostrecent/json"
MAX_FEED_PAGES = 10


def feed_url(options: AppStoreOptions, page: int) -> str:
    return FEED_URL.format(country=options.country.lower(), page=page, app_id=options.app_id)


def app_url(options: AppStoreOptions) -> str:
    return f"https://apps.apple.com/{options.country.lower()}/app/id{options.app_id}"


async def fetch_page(ctx: FetchContext, cursor: str | None) -> PageResult:
    page = int(cursor) if cursor else 1
    try:
        data = await ctx.limiter.get_json(ctx.client, feed_url(ctx.options, page))
    except (NotFound, ClientError, UpstreamServerError) as e:
        if page == 1:
            raise
        # Apple answers past the last available page with an error.
        logger.info("Review feed ended at page %d (%s)", page, e.kind)
        return PageResult(items=[], next_cursor=None, raw_count=0)

    entries = (data.get("feed") or {}).get("entry") or []
    if isinstance(entries, dict):
        entries = [entries]

    has_next = bool(entries) and page < MAX_FEED_PAGES
    return PageResult(
        items=entries,
        next_cursor=str(page + 1) if has_next else None,
        raw_count=len(entries),
    )


def is_review(raw: dict, options: AppStoreOptions) -> bool:
    return "im:rating" in raw


def _label(raw: dict, key: str, default: str = "") -> str:
    value = raw.get(key)
    if isinstance(value, dict):
        return value.get("label", default)
    return default


def _int_label(raw: dict, key: str) -> int:
    try:
        return int(_label(raw, key, "0") or 0)
    except ValueError:
        return 0


def transform(raw: dict, options: AppStoreOptions) -> ContentItem:
    updated = _label(raw, "updated")
    if not updated:
        raise ParseError(f"App Store review {_label(raw, 'id')!r} has no date")
    review_id = _label(raw, "id")
    if not review_id:
        raise ParseError("App Store review has no id")

    rating = _int_label(raw, "im:rating")
    title = _label(raw, "title")
    body = _label(raw, "content")
    link = ((raw.get("link") or {}).get("attributes") or {}).get("href")
    return ContentItem(
        external_id=review_id,
        title=title or None,
        content=f"{title}\n\n{body}" if title else body,
        author=((raw.get("author") or {}).get("name") or {}).get("label", "Anonymous"),
        url=link or app_url(options),
        published_at=datetime.fromisoformat(updated.replace("Z", "+00:00")),
        score=float(rating),
        metadata={
            "rating": rating,
            "version": _label(raw, "im:version") or None,
            "vote_sum": _int_label(raw, "im:voteSum"),
            "vote_count": _int_label(raw, "im:voteCount"),
        },
    )


def checkpoint_extras(existing: AppStoreCheckpoint | None, contents: list[ContentItem], options) -> dict:
    if not contents:
        return {}
    newest = max(contents, key=lambda item: item.published_at)
    if existing is not None and existing.last_timestamp and newest.published_at <= existing.last_timestamp:
        return {}
    return {"last_review_id": newest.external_id}


STRATEGY = SourceStrategy(
    kind="ios_appstore",
    fetch_page=fetch_page,
    transform=transform,
    checkpoint_model=AppStoreCheckpoint,
    ordering=Ordering.DESCENDING,
    filter_item=is_review,
    checkpoint_extras=checkpoint_extras,
    rate_limit_seconds=1.0,
    max_pages=MAX_FEED_PAGES,
    recommended_interval=timedelta(hours=6),
)
