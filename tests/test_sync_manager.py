"""Tests for checkpoint persistence and end-to-end sync orchestration."""

import time
from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy import select

from crawlsync.models.sync_run import SyncRun
from crawlsync.models.sync_source import SyncSource
from crawlsync.schemas.checkpoints import HackerNewsCheckpoint, RedditCheckpoint
from crawlsync.services.checkpoint_store import CheckpointStore
from crawlsync.services.collector.errors import InvalidConfig, RateLimited, UpstreamServerError
from crawlsync.services.sync_manager import execute_sync

NOW = int(time.time()) - 60


async def _add_source(db, key="hn-rust", kind="hackernews", options=None, checkpoint=None):
    db.add(SyncSource(key=key, kind=kind, options=options or {"search_query": "rust"}, checkpoint=checkpoint))
    await db.commit()


async def _runs(db):
    result = await db.execute(select(SyncRun).execution_options(populate_existing=True))
    return result.scalars().all()


def _hn_page():
    hits = [
        {"objectID": "2", "title": "Two", "author": "a", "points": 1, "created_at_i": NOW, "_tags": ["story"]},
        {"objectID": "1", "title": "One", "author": "b", "points": 1, "created_at_i": NOW - 60, "_tags": ["story"]},
    ]
    return {"hits": hits, "page": 0, "nbPages": 1}


async def test_store_round_trip(db_session):
    await _add_source(db_session, key="r-python", kind="reddit", options={"subreddit": "python"})
    store = CheckpointStore(db_session)

    assert await store.load("r-python") is None

    checkpoint = RedditCheckpoint(
        last_timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc), processed_thread_ids=["abc"]
    )
    await store.save("r-python", checkpoint)

    loaded = await store.load("r-python")
    assert isinstance(loaded, RedditCheckpoint)
    assert loaded.processed_thread_ids == ["abc"]
    assert loaded.last_timestamp == checkpoint.last_timestamp


async def test_flush_hook_saves_partial_state(db_session):
    await _add_source(db_session)
    store = CheckpointStore(db_session)

    await store.flush_hook("hn-rust")(HackerNewsCheckpoint(processed_story_ids=["hn_story_9"]))

    assert (await store.load("hn-rust")).processed_story_ids == ["hn_story_9"]


async def test_unreadable_checkpoint_is_invalid_config(db_session):
    await _add_source(db_session, checkpoint={"kind": "nonsense"})

    with pytest.raises(InvalidConfig):
        await CheckpointStore(db_session).load("hn-rust")


async def test_execute_sync_persists_checkpoint_and_run(db_session, mock_client):
    await _add_source(db_session)
    client = mock_client(lambda request: httpx.Response(200, json=_hn_page()))

    result = await execute_sync("hn-rust", db_session, {}, client=client)

    assert [item.external_id for item in result.contents] == ["hn_story_2", "hn_story_1"]
    stored = await CheckpointStore(db_session).load("hn-rust")
    assert stored.last_timestamp == datetime.fromtimestamp(NOW, tz=timezone.utc)
    assert stored.total_items_processed == 2

    (sync_run,) = await _runs(db_session)
    assert sync_run.status == "completed"
    assert sync_run.items_found == 2
    assert sync_run.pages_fetched == 1
    assert sync_run.completed_at is not None
    assert sync_run.next_recommended_run_at is not None


async def test_second_sync_resumes_from_stored_checkpoint(db_session, mock_client):
    await _add_source(db_session)
    client = mock_client(lambda request: httpx.Response(200, json=_hn_page()))

    await execute_sync("hn-rust", db_session, {}, client=client)
    again = await execute_sync("hn-rust", db_session, {}, client=client)

    assert again.contents == []
    assert again.metadata.reached_checkpoint


async def test_rate_limit_is_recorded_and_reraised(db_session, mock_client):
    await _add_source(db_session)
    client = mock_client(lambda request: httpx.Response(429, headers={"Retry-After": "12"}))

    with pytest.raises(RateLimited):
        await execute_sync("hn-rust", db_session, {}, client=client)

    (sync_run,) = await _runs(db_session)
    assert sync_run.status == "failed"
    assert sync_run.error_kind == "rate_limited"
    assert sync_run.retry_after_seconds == 12.0
    assert await CheckpointStore(db_session).load("hn-rust") is None


async def test_invalid_options_fail_the_run(db_session, mock_client):
    await _add_source(db_session, options={"search_query": ""})
    client = mock_client(lambda request: httpx.Response(200, json=_hn_page()))

    with pytest.raises(InvalidConfig):
        await execute_sync("hn-rust", db_session, {}, client=client)

    (sync_run,) = await _runs(db_session)
    assert sync_run.error_kind == "invalid_config"


async def test_unknown_source_key(db_session):
    with pytest.raises(InvalidConfig):
        await execute_sync("missing", db_session, {})


def _reddit_page(after):
    posts = [
        {"id": pid, "title": pid, "selftext": "text", "author": "alice", "permalink": f"/r/python/comments/{pid}/",
         "created_utc": NOW - n * 60, "num_comments": 0, "subreddit": "python"}
        for n, pid in enumerate(("p1", "p2"))
    ]
    return {"kind": "Listing", "data": {"after": after, "children": [{"kind": "t3", "data": p} for p in posts]}}


async def test_page_progress_survives_a_failed_reddit_sync(db_session, mock_client):
    await _add_source(db_session, key="r-python", kind="reddit", options={"subreddit": "python"})

    def handler(request: httpx.Request):
        if request.url.params.get("after"):
            return httpx.Response(503)
        return httpx.Response(200, json=_reddit_page("t3_p2"))

    with pytest.raises(UpstreamServerError):
        await execute_sync("r-python", db_session, {}, client=mock_client(handler))

    stored = await CheckpointStore(db_session).load("r-python")
    assert stored.pagination_token == "t3_p2"
    assert stored.last_timestamp == datetime.fromtimestamp(NOW, tz=timezone.utc)
    assert stored.backlog_stop_timestamp is None
    assert stored.total_items_processed == 2
