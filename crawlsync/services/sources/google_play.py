"""Google Play app reviews through the ``google-play-scraper`` package.

Reviews are requested newest first, so the source is DESCENDING. The
scraper is synchronous and runs in a worker thread behind the run's rate
limiter. Its continuation token is stored as the bare token string and
rebuilt from the options when a backlog resumes.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from urllib.error import HTTPError, URLError

from google_play_scraper import Sort, reviews
from google_play_scraper.exceptions import NotFoundError
from google_play_scraper.features.reviews import _ContinuationToken

from crawlsync.schemas.checkpoints import GooglePlayCheckpoint
from crawlsync.schemas.options import GooglePlayOptions
from crawlsync.services.collector.base import (
    ContentItem,
    FetchContext,
    Ordering,
    PageResult,
    SourceStrategy,
)
from crawlsync.services.collector.errors import (
    ClientError,
    CollectorError,
    NotFound,
    ParseError,
    RateLimited,
    TransientNetwork,
    UpstreamServerError,
)

logger = logging.getLogger("crawlsync.sources.google_play")

PAGE_SIZE = 150


def continuation_for(options: GooglePlayOptions, cursor: str | None) -> _ContinuationToken | None:
    if not cursor:
        return None
    return _ContinuationToken(
        token=cursor,
        lang=options.lang,
        country=options.country,
        sort=Sort.NEWEST.value,
        count=PAGE_SIZE,
        filter_score_with=None,
        filter_device_with=None,
    )


def classify_scraper_error(exc: Exception, app_id: str) -> CollectorError:
    label = "google_play"
    if isinstance(exc, NotFoundError):
        return NotFound(f"Google Play app not found: {app_id}", source=label, status_code=404)
    if isinstance(exc, HTTPError):
        status = exc.code
        if status == 429:
            return RateLimited(f"{label} rate limit exceeded (HTTP 429)", source=label, status_code=status)
        if status >= 500:
            return UpstreamServerError(f"{label} server error (HTTP {status})", source=label, status_code=status)
        return ClientError(f"{label} request failed (HTTP {status})", source=label, status_code=status)
    if isinstance(exc, (URLError, TimeoutError, ConnectionError)):
        return TransientNetwork(f"{label} network error: {exc}", source=label)
    return UpstreamServerError(f"{label} returned an unreadable answer: {exc!r}", source=label)


async def fetch_page(ctx: FetchContext, cursor: str | None) -> PageResult:
    options: GooglePlayOptions = ctx.options
    await ctx.limiter.wait()
    try:
        result, token = await asyncio.to_thread(
            reviews,
            options.app_id,
            lang=options.lang,
            country=options.country,
            sort=Sort.NEWEST,
            count=PAGE_SIZE,
            continuation_token=continuation_for(options, cursor),
        )
    except Exception as e:
        raise classify_scraper_error(e, options.app_id) from e

    next_cursor = getattr(token, "token", None) if result else None
    logger.debug("app=%s page reviews=%d more=%s", options.app_id, len(result), bool(next_cursor))
    return PageResult(items=result, next_cursor=next_cursor or None, raw_count=len(result))


def _as_utc(value: datetime) -> datetime:
    # The scraper builds naive local datetimes from epoch seconds
    return value.astimezone(timezone.utc)


def transform(raw: dict, options: GooglePlayOptions) -> ContentItem:
    review_id = raw.get("reviewId")
    if not review_id:
        raise ParseError("Google Play review has no reviewId", source="google_play")
    posted = raw.get("at")
    if not isinstance(posted, datetime):
        raise ParseError(f"Google Play review {review_id!r} has no date", source="google_play")

    rating = raw.get("score") or 0
    replied_at = raw.get("repliedAt")
    return ContentItem(
        external_id=review_id,
        content=raw.get("content") or "",
        author=raw.get("userName") or "Anonymous",
        url=f"https://play.google.com/store/apps/details?id={options.app_id}&reviewId={review_id}",
        published_at=_as_utc(posted),
        score=float(rating),
        metadata={
            "rating": rating,
            "thumbs_up": raw.get("thumbsUpCount") or 0,
            "version": raw.get("appVersion") or raw.get("reviewCreatedVersion"),
            "reply": raw.get("replyContent"),
            "reply_date": _as_utc(replied_at).isoformat() if isinstance(replied_at, datetime) else None,
        },
    )


STRATEGY = SourceStrategy(
    kind="google_play",
    fetch_page=fetch_page,
    transform=transform,
    checkpoint_model=GooglePlayCheckpoint,
    ordering=Ordering.DESCENDING,
    rate_limit_seconds=1.0,
    max_pages=4,  # about 500 reviews per run
    recommended_interval=timedelta(hours=6),
)
