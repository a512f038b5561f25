"""Tests for option validation and checkpoint serialization."""

from datetime import datetime, timezone

import pytest

from crawlsync.schemas.checkpoints import (
    HackerNewsCheckpoint,
    RedditCheckpoint,
    TrustpilotCheckpoint,
    cap_tracked_ids,
    dump_checkpoint,
    load_checkpoint,
)
from crawlsync.schemas.options import (
    AppStoreOptions,
    GitHubOptions,
    RedditOptions,
    TrustpilotOptions,
    parse_options,
)
from crawlsync.services.collector.errors import InvalidConfig


def test_options_are_selected_by_source():
    options = parse_options({"source": "github", "repo_owner": "psf", "repo_name": "requests"})

    assert isinstance(options, GitHubOptions)
    assert options.content_type == "issues"
    assert options.lookback_days == 365


def test_reddit_needs_a_target():
    with pytest.raises(InvalidConfig):
        parse_options({"source": "reddit"})
    with pytest.raises(InvalidConfig):
        parse_options({"source": "reddit", "search_terms": []})


def test_reddit_comments_cannot_search():
    with pytest.raises(InvalidConfig):
        parse_options(
            {"source": "reddit", "subreddit": "python", "search_terms": ["x"], "content_type": "comments"}
        )
    assert isinstance(parse_options({"source": "reddit", "subreddit": "python"}), RedditOptions)


def test_hackernews_query_must_not_be_blank():
    with pytest.raises(InvalidConfig):
        parse_options({"source": "hackernews", "search_query": "   "})


def test_lookback_is_bounded():
    with pytest.raises(InvalidConfig):
        parse_options({"source": "github", "repo_owner": "a", "repo_name": "b", "lookback_days": 731})


def test_unknown_source_is_invalid():
    with pytest.raises(InvalidConfig):
        parse_options({"source": "myspace"})


def test_trustpilot_review_url():
    by_name = TrustpilotOptions(business_name="example.com")
    by_url = TrustpilotOptions(business_url="https://uk.trustpilot.com/review/example.com")

    assert by_name.review_url == "https://www.trustpilot.com/review/example.com"
    assert by_url.review_url == "https://uk.trustpilot.com/review/example.com"
    with pytest.raises(InvalidConfig):
        parse_options({"source": "trustpilot", "business_url": "ftp://example.com"})


def test_appstore_app_id_is_numeric():
    assert AppStoreOptions(app_id="284882215").country == "us"
    with pytest.raises(InvalidConfig):
        parse_options({"source": "ios_appstore", "app_id": "facebook"})


def test_checkpoint_json_round_trip_keeps_variant():
    checkpoint = HackerNewsCheckpoint(
        last_timestamp=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        processed_story_ids=["hn_story_1"],
        total_items_processed=7,
    )

    data = dump_checkpoint(checkpoint)
    loaded = load_checkpoint(data)

    assert data["kind"] == "hackernews"
    assert isinstance(loaded, HackerNewsCheckpoint)
    assert loaded == checkpoint


def test_missing_checkpoint_means_first_run():
    assert load_checkpoint(None) is None
    assert load_checkpoint({}) is None


def test_naive_timestamps_are_read_as_utc():
    loaded = load_checkpoint({"kind": "reddit", "last_timestamp": "2024-01-02T03:04:05"})

    assert isinstance(loaded, RedditCheckpoint)
    assert loaded.last_timestamp.tzinfo is not None


def test_variant_specific_fields():
    assert TrustpilotCheckpoint(last_page=3).last_page == 3


def test_cap_tracked_ids_keeps_most_recent():
    assert cap_tracked_ids(["a", "b", "c"], 2) == ["b", "c"]
    assert cap_tracked_ids(["a"], 2) == ["a"]
