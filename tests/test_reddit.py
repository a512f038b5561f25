"""Tests for the Reddit source."""

from datetime import datetime, timedelta, timezone

import httpx
from conftest import without_pacing

from crawlsync.config import Settings
from crawlsync.schemas.checkpoints import RedditCheckpoint
from crawlsync.schemas.options import RedditOptions
from crawlsync.services.collector.runner import run
from crawlsync.services.sources import reddit

CREATED = (datetime.now(timezone.utc) - timedelta(hours=1)).replace(microsecond=0).timestamp()


def _post(post_id, offset=0, **overrides):
    post = {
        "id": post_id,
        "title": f"Post {post_id}",
        "selftext": "body text",
        "author": "alice",
        "permalink": f"/r/python/comments/{post_id}/post/",
        "created_utc": CREATED - offset,
        "score": 5,
        "ups": 5,
        "downs": 0,
        "num_comments": 2,
        "subreddit": "python",
    }
    post.update(overrides)
    return post


def _comment(comment_id, parent, replies=None, **overrides):
    data = {
        "id": comment_id,
        "body": f"comment {comment_id}",
        "author": "bob",
        "permalink": f"/r/python/comments/busy/post/{comment_id}/",
        "created_utc": CREATED + 60,
        "score": 3,
        "link_id": "t3_busy",
        "parent_id": parent,
        "depth": 0,
        "replies": replies or "",
    }
    data.update(overrides)
    return {"kind": "t1", "data": data}


def _listing(children, after=None, kind="t3"):
    return {"kind": "Listing", "data": {"after": after, "children": [{"kind": kind, "data": c} for c in children]}}


def test_listing_request_for_search_in_subreddit():
    options = RedditOptions(subreddit="python", search_terms=["asyncio", "trio"])

    url, params = reddit.build_listing_request(options, "t3_abc")

    assert url == "https://www.reddit.com/r/python/search.json"
    assert params["q"] == "asyncio OR trio"
    assert params["restrict_sr"] == "on"
    assert params["sort"] == "new"
    assert params["after"] == "t3_abc"


def test_listing_request_for_comments_and_new_posts():
    comments_url, _ = reddit.build_listing_request(RedditOptions(subreddit="python", content_type="comments"), None)
    new_url, params = reddit.build_listing_request(RedditOptions(subreddit="python"), None)

    assert comments_url.endswith("/r/python/comments.json")
    assert new_url.endswith("/r/python/new.json")
    assert "after" not in params


def test_keep_item_drops_removed_and_off_topic_posts():
    options = RedditOptions(subreddit="python", search_terms=["asyncio"])

    assert reddit.keep_item(_post("a", title="asyncio tips"), options)
    assert not reddit.keep_item(_post("b", title="flair match only"), options)
    assert not reddit.keep_item(_post("c", title="asyncio", author="[deleted]"), options)
    assert not reddit.keep_item(_post("d", title="asyncio", selftext="[removed]"), options)
    assert not reddit.keep_item(_post("e", title="asyncio", crosspost_parent="t3_x"), options)


def test_comment_parent_ids():
    assert reddit.comment_parent_id("t1_xyz") == "comment_xyz"
    assert reddit.comment_parent_id("t3_abc") == "abc"
    assert reddit.comment_parent_id(None) is None


def test_transform_comment():
    item = reddit.transform_comment(_comment("c1", "t3_busy")["data"])

    assert item.external_id == "comment_c1"
    assert item.parent_external_id == "busy"
    assert item.metadata["post_id"] == "busy"
    assert item.published_at.tzinfo is not None


async def test_run_collects_posts_and_busy_threads(mock_client):
    requests = []

    def handler(request: httpx.Request):
        requests.append(request.url.path)
        if request.url.path == "/r/python/new.json":
            return httpx.Response(
                200,
                json=_listing([
                    _post("busy", num_comments=120, score=900),
                    _post("quiet", offset=60, num_comments=0),
                ]),
            )
        if request.url.path == "/comments/busy.json":
            nested = {"kind": "Listing", "data": {"children": [_comment("c2", "t1_c1")]}}
            thread = {"kind": "Listing", "data": {"children": [
                _comment("c1", "t3_busy", replies=nested),
                _comment("gone", "t3_busy", author="[deleted]"),
                {"kind": "more", "data": {"children": ["c9"]}},
            ]}}
            return httpx.Response(200, json=[_listing([_post("busy")]), thread])
        return httpx.Response(404)

    client = mock_client(handler)
    options = RedditOptions(subreddit="python")

    result = await run(options, None, client=client, strategy=without_pacing(reddit.STRATEGY))

    ids = [item.external_id for item in result.contents]
    assert set(ids) == {"busy", "quiet", "comment_c1", "comment_c2"}
    assert result.parent_map == {"comment_c1": "busy", "comment_c2": "comment_c1"}
    assert isinstance(result.checkpoint, RedditCheckpoint)
    assert result.checkpoint.processed_thread_ids == ["busy"]
    assert result.checkpoint.last_timestamp == datetime.fromtimestamp(CREATED, tz=timezone.utc)
    assert requests == ["/r/python/new.json", "/comments/busy.json"]


async def test_bearer_token_switches_to_oauth_host():
    client = reddit.open_client(RedditOptions(subreddit="python"), {"REDDIT_ACCESS_TOKEN": "tok"})
    try:
        assert client.headers["Authorization"] == "Bearer tok"
    finally:
        await client.aclose()
    assert reddit._base_url({"REDDIT_ACCESS_TOKEN": "tok"}) == reddit.REDDIT_OAUTH_BASE


async def test_configured_user_agent_reaches_the_client():
    secrets = Settings(reddit_user_agent="linux:crawlsync:1.0 (by /u/ops)").source_secrets()
    client = reddit.open_client(RedditOptions(subreddit="python"), secrets)
    try:
        assert client.headers["User-Agent"] == "linux:crawlsync:1.0 (by /u/ops)"
    finally:
        await client.aclose()
