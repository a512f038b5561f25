"""Tests for the review-site sources (Trustpilot, iOS App Store)."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from conftest import without_pacing

from crawlsync.schemas.checkpoints import AppStoreCheckpoint, TrustpilotCheckpoint
from crawlsync.schemas.options import AppStoreOptions, TrustpilotOptions
from crawlsync.services.collector.errors import NotFound
from crawlsync.services.collector.runner import run
from crawlsync.services.sources import appstore, trustpilot

NOW = datetime.now(timezone.utc).replace(microsecond=0)


def _iso(dt):
    return dt.strftime("%Y-%m-%dT%H:%M:%S.000Z")


def _card(review_id, when, text="Great service, fast delivery.", rating=5, author="Jane"):
    return f"""
    <article data-service-review-card-paper="true">
      <span data-consumer-name-typography="true">{author}</span>
      <div data-service-review-rating="{rating}"></div>
      <time datetime="{_iso(when)}">date</time>
      <a href="/reviews/{review_id}"><h2 data-service-review-title-typography="true">Title {review_id}</h2></a>
      <p data-service-review-text-typography="true">{text}</p>
    </article>
    """


def _review_page(cards, has_next):
    nav = '<a name="pagination-button-next" href="?page=2">Next</a>' if has_next else (
        '<a name="pagination-button-next" aria-disabled="true">Next</a>'
    )
    return f"<html><body><main>{''.join(cards)}</main><nav>{nav}</nav></body></html>"


def test_trustpilot_page_parsing():
    html = _review_page([_card("abc123", NOW, rating=2, author="Sam")], has_next=True)

    reviews, has_next = trustpilot.parse_review_page(html, 1)

    assert has_next
    assert reviews[0]["id"] == "abc123"
    assert reviews[0]["rating"] == 2
    assert reviews[0]["author"] == "Sam"
    assert reviews[0]["title"] == "Title abc123"


def test_trustpilot_disabled_next_link_ends_listing():
    _, has_next = trustpilot.parse_review_page(_review_page([_card("a", NOW)], has_next=False), 3)
    assert not has_next


def test_trustpilot_falls_back_to_date_author_id():
    options = TrustpilotOptions(business_name="example.com")
    raw = {"id": None, "rating": 4, "title": "", "text": "Pretty good overall", "date": _iso(NOW), "author": "Lee", "page": 1}

    item = trustpilot.transform(raw, options)

    assert item.external_id == f"{_iso(NOW)}-Lee"
    assert item.content == "Pretty good overall"
    assert item.url == "https://www.trustpilot.com/review/example.com"


async def test_trustpilot_run(mock_client):
    pages = {
        "1": _review_page(
            [_card("r3", NOW), _card("short", NOW - timedelta(hours=1), text="ok"), _card("r2", NOW - timedelta(hours=2))],
            has_next=True,
        ),
        "2": _review_page([_card("r1", NOW - timedelta(days=2))], has_next=False),
    }
    requested = []

    def handler(request: httpx.Request):
        page = request.url.params.get("page", "1")
        requested.append(page)
        return httpx.Response(200, text=pages[page])

    client = mock_client(handler)
    options = TrustpilotOptions(business_url="https://www.trustpilot.com/review/example.com")

    result = await run(options, None, client=client, strategy=without_pacing(trustpilot.STRATEGY))

    assert [item.external_id for item in result.contents] == ["r3", "r2", "r1"]
    assert result.metadata.items_filtered == 1
    assert requested == ["1", "2"]
    assert isinstance(result.checkpoint, TrustpilotCheckpoint)
    assert result.checkpoint.last_page == 2


def _entry(review_id, when, rating="4"):
    return {
        "id": {"label": review_id},
        "im:rating": {"label": rating},
        "title": {"label": f"Title {review_id}"},
        "content": {"label": "Crashes on launch since the update"},
        "author": {"name": {"label": "Taylor"}},
        "updated": {"label": when.isoformat()},
        "link": {"attributes": {"href": f"https://apps.apple.com/us/review?id={review_id}"}},
        "im:version": {"label": "2.3.1"},
        "im:voteSum": {"label": "3"},
        "im:voteCount": {"label": "5"},
    }


APP_ENTRY = {"id": {"label": "https://apps.apple.com/us/app/id123"}, "im:name": {"label": "Widgets"}}


def test_appstore_transform():
    options = AppStoreOptions(app_id="123")

    item = appstore.transform(_entry("9001", NOW), options)

    assert item.external_id == "9001"
    assert item.content.startswith("Title 9001\n\n")
    assert item.metadata == {"rating": 4, "version": "2.3.1", "vote_sum": 3, "vote_count": 5}
    assert item.published_at == NOW


async def test_appstore_run_skips_app_entry_and_ends_on_error_page(mock_client):
    def handler(request: httpx.Request):
        if "page=1/" in request.url.path:
            feed = {"feed": {"entry": [APP_ENTRY, _entry("3", NOW), _entry("2", NOW - timedelta(hours=1))]}}
            return httpx.Response(200, json=feed)
        if "page=2/" in request.url.path:
            return httpx.Response(200, json={"feed": {"entry": _entry("1", NOW - timedelta(hours=2))}})
        return httpx.Response(400)

    client = mock_client(handler)
    options = AppStoreOptions(app_id="123")

    result = await run(options, None, client=client, strategy=without_pacing(appstore.STRATEGY))

    assert [item.external_id for item in result.contents] == ["3", "2", "1"]
    assert result.metadata.items_filtered == 1
    assert result.metadata.pages_fetched == 3
    assert isinstance(result.checkpoint, AppStoreCheckpoint)
    assert result.checkpoint.last_review_id == "3"


async def test_appstore_first_page_error_is_raised(mock_client):
    client = mock_client(lambda request: httpx.Response(404))

    with pytest.raises(NotFound):
        await run(AppStoreOptions(app_id="123"), None, client=client, strategy=without_pacing(appstore.STRATEGY))


async def test_appstore_keeps_review_id_when_nothing_new(mock_client):
    feed = {"feed": {"entry": [APP_ENTRY, _entry("3", NOW - timedelta(days=1))]}}
    client = mock_client(lambda request: httpx.Response(200, json=feed))
    checkpoint = AppStoreCheckpoint(last_timestamp=NOW, last_review_id="7")

    result = await run(AppStoreOptions(app_id="123"), checkpoint, client=client, strategy=without_pacing(appstore.STRATEGY))

    assert result.contents == []
    assert result.checkpoint.last_review_id == "7"
    assert result.checkpoint.last_timestamp == NOW
