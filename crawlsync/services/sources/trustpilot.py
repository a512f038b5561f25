"""Trustpilot reviews scraped from the public business review pages.

Review pages are server-rendered HTML listing the newest reviews first, so
the source is DESCENDING and each run stops at the checkpoint. The cursor is
the next page number.
"""

import logging
from datetime import datetime, timedelta

from bs4 import BeautifulSoup

from crawlsync.schemas.checkpoints import TrustpilotCheckpoint
from crawlsync.schemas.options import TrustpilotOptions
from crawlsync.services.collector.base import (
    ContentItem,
    FetchContext,
    Ordering,
    PageResult,
    SourceStrategy,
)
from crawlsync.services.collector.errors import ParseError

logger = logging.getLogger("crawlsync.sources.trustpilot")

REVIEW_CARD = "[data-service-review-card-paper]"
MIN_TEXT_CHARS = 10


def page_url(base_url: str, page: int) -> str:
    return base_url if page == 1 else f"{base_url}?page={page}"


def _text(card, selector: str) -> str:
    el = card.select_one(selector)
    return el.get_text(" ", strip=True) if el else ""


def parse_review_card(card, page: int) -> dict:
    rating_el = card.select_one("[data-service-review-rating]")
    time_el = card.select_one("time[datetime]")
    link_el = card.select_one('a[href*="/reviews/"]')

    rating = 0
    if rating_el is not None:
        try:
            rating = int(rating_el.get("data-service-review-rating") or 0)
        except ValueError:
            rating = 0

    review_id = None
    if link_el is not None:
        review_id = link_el["href"].rstrip("/").rsplit("/", 1)[-1] or None

    return {
        "id": review_id,
        "rating": rating,
        "title": _text(card, "[data-service-review-title-typography]"),
        "text": _text(card, "[data-service-review-text-typography]"),
        "date": time_el.get("datetime") if time_el else "",
        "author": _text(card, "[data-consumer-name-typography]"),
        "page": page,
    }


def parse_review_page(html: str, page: int) -> tuple[list[dict], bool]:
    """Review dicts on one page, and whether a next page is linked."""
    soup = BeautifulSoup(html, "lxml")
    reviews = [parse_review_card(card, page) for card in soup.select(REVIEW_CARD)]

    next_link = soup.select_one('a[name="pagination-button-next"]') or soup.select_one(
        'link[rel="next"], a[rel="next"]'
    )
    has_next = (
        next_link is not None
        and next_link.get("href")
        and next_link.get("aria-disabled") != "true"
    )
    return reviews, bool(has_next)


async def fetch_page(ctx: FetchContext, cursor: str | None) -> PageResult:
    page = int(cursor) if cursor else 1
    url = page_url(ctx.options.review_url, page)
    response = await ctx.limiter.request(
        ctx.client, "GET", url, headers={"Accept": "text/html,application/xhtml+xml"}
    )

    reviews, has_next = parse_review_page(response.text, page)
    if not reviews:
        logger.warning("No review cards found on %s", url)
    return PageResult(
        items=reviews,
        next_cursor=str(page + 1) if has_next and reviews else None,
        raw_count=len(reviews),
    )


def keep_review(raw: dict, options: TrustpilotOptions) -> bool:
    return len(raw.get("text") or "") > MIN_TEXT_CHARS


def transform(raw: dict, options: TrustpilotOptions) -> ContentItem:
    if not raw.get("date"):
        raise ParseError("Trustpilot review has no datetime")
    published_at = datetime.fromisoformat(raw["date"].replace("Z", "+00:00"))

    title = raw.get("title") or ""
    content = f"{title}\n\n{raw['text']}" if title else raw["text"]
    return ContentItem(
        external_id=raw.get("id") or f"{raw['date']}-{raw.get('author', '')}",
        title=title or None,
        content=content,
        author=raw.get("author", ""),
        url=options.review_url,
        published_at=published_at,
        score=float(raw.get("rating", 0)),
        metadata={
            "rating": raw.get("rating", 0),
            "helpful_count": 0,
            "title": title,
            "page": raw.get("page"),
        },
    )


def checkpoint_extras(existing: TrustpilotCheckpoint | None, contents: list[ContentItem], options) -> dict:
    pages = [item.metadata["page"] for item in contents if item.metadata.get("page")]
    if not pages:
        return {}
    return {"last_page": max(pages)}


STRATEGY = SourceStrategy(
    kind="trustpilot",
    fetch_page=fetch_page,
    transform=transform,
    checkpoint_model=TrustpilotCheckpoint,
    ordering=Ordering.DESCENDING,
    filter_item=keep_review,
    checkpoint_extras=checkpoint_extras,
    rate_limit_seconds=4.0,  # 15 req/min
    max_pages=5,
    recommended_interval=timedelta(hours=6),
)
