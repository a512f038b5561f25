"""Google Maps business reviews via the Places API.

Place Details returns at most five reviews per place; asking for
``reviews_sort=newest`` makes them the latest ones, so each run is a single
DESCENDING page. A ``business_name`` is resolved to a place id first.
"""

import logging
from datetime import datetime, timedelta, timezone

from crawlsync.schemas.checkpoints import GoogleMapsCheckpoint
from crawlsync.schemas.options import GoogleMapsOptions
from crawlsync.services.collector.base import (
    ContentItem,
    FetchContext,
    Ordering,
    PageResult,
    SourceStrategy,
)
from crawlsync.services.collector.errors import (
    AuthFailed,
    InvalidConfig,
    NotFound,
    ParseError,
    RateLimited,
    UpstreamServerError,
)

logger = logging.getLogger("crawlsync.sources.gmaps")

PLACES_API = "https://maps.googleapis.com/maps/api/place"


def _api_key(ctx: FetchContext) -> str:
    key = ctx.secrets.get("GOOGLE_MAPS_API_KEY")
    if not key:
        raise InvalidConfig("GOOGLE_MAPS_API_KEY not configured", source="gmaps")
    return key


def check_status(data: dict) -> None:
    """Places answers HTTP 200 with the real outcome in ``status``."""
    status = data.get("status", "")
    if status in ("OK", "ZERO_RESULTS"):
        return
    detail = data.get("error_message") or status
    if status == "OVER_QUERY_LIMIT":
        raise RateLimited(f"Google Places quota exceeded: {detail}", source="gmaps")
    if status == "REQUEST_DENIED":
        raise AuthFailed(f"Google Places rejected the request: {detail}", source="gmaps")
    if status == "NOT_FOUND":
        raise NotFound(f"Google Places has no such place: {detail}", source="gmaps")
    if status == "INVALID_REQUEST":
        raise InvalidConfig(f"Google Places rejected the options: {detail}", source="gmaps")
    raise UpstreamServerError(f"Google Places error: {detail}", source="gmaps")


async def resolve_place_id(ctx: FetchContext, key: str) -> str:
    options: GoogleMapsOptions = ctx.options
    if options.place_id:
        return options.place_id

    data = await ctx.limiter.get_json(
        ctx.client,
        f"{PLACES_API}/findplacefromtext/json",
        params={
            "input": options.business_name,
            "inputtype": "textquery",
            "fields": "place_id",
            "key": key,
        },
    )
    check_status(data)
    candidates = data.get("candidates") or []
    if not candidates:
        raise NotFound(f"Business not found: {options.business_name}", source="gmaps")
    logger.info("Resolved %r to place %s", options.business_name, candidates[0]["place_id"])
    return candidates[0]["place_id"]


async def fetch_page(ctx: FetchContext, cursor: str | None) -> PageResult:
    key = _api_key(ctx)
    place_id = await resolve_place_id(ctx, key)

    data = await ctx.limiter.get_json(
        ctx.client,
        f"{PLACES_API}/details/json",
        params={
            "place_id": place_id,
            "fields": "name,reviews,url",
            "reviews_sort": "newest",
            "language": ctx.options.language,
            "key": key,
        },
    )
    check_status(data)

    place = data.get("result") or {}
    place_url = place.get("url") or f"https://maps.google.com/?q=place_id:{place_id}"
    reviews = [
        {**review, "place_id": place_id, "place_url": place_url}
        for review in place.get("reviews") or []
    ]
    return PageResult(items=reviews, next_cursor=None, raw_count=len(reviews))


def transform(raw: dict, options: GoogleMapsOptions) -> ContentItem:
    created = raw.get("time")
    if created is None:
        raise ParseError("Google Maps review has no time", source="gmaps")

    rating = raw.get("rating") or 0
    return ContentItem(
        external_id=f"{raw['place_id']}_{created}",
        content=raw.get("text") or "",
        author=raw.get("author_name") or "Anonymous",
        url=raw["place_url"],
        published_at=datetime.fromtimestamp(int(created), tz=timezone.utc),
        score=float(rating),
        metadata={
            "rating": rating,
            "author_url": raw.get("author_url"),
            "relative_time_description": raw.get("relative_time_description"),
            "language": raw.get("language"),
        },
    )


def checkpoint_extras(existing: GoogleMapsCheckpoint | None, contents: list[ContentItem], options) -> dict:
    if not contents:
        return {}
    newest = int(max(item.published_at for item in contents).timestamp())
    if existing is not None and existing.last_review_time and newest <= existing.last_review_time:
        return {}
    return {"last_review_time": newest}


STRATEGY = SourceStrategy(
    kind="gmaps",
    fetch_page=fetch_page,
    transform=transform,
    checkpoint_model=GoogleMapsCheckpoint,
    ordering=Ordering.DESCENDING,
    checkpoint_extras=checkpoint_extras,
    rate_limit_seconds=3.0,  # 20 req/min
    max_pages=1,
    recommended_interval=timedelta(hours=12),
)
