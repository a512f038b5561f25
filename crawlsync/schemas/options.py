"""Validated per-source configuration.

Options arrive as plain dicts (from the database or the CLI) and are parsed
into one of the models below, selected by the ``source`` field.
"""

import re
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, model_validator

from crawlsync.services.collector.errors import InvalidConfig

LookbackDays = Annotated[int, Field(ge=1, le=730)]
MaxPages = Annotated[int, Field(ge=1, le=500)]


class RedditOptions(BaseModel):
    source: Literal["reddit"] = "reddit"
    subreddit: str | None = Field(None, min_length=1)
    search_terms: list[str] | None = None
    content_type: Literal["posts", "comments"] = "posts"
    lookback_days: LookbackDays = 365
    max_pages: MaxPages | None = None
    min_comments_for_thread: int = Field(30, ge=0)
    min_score_for_thread: int = Field(100, ge=0)
    max_threads_to_fetch: int = Field(25, ge=0, le=500)

    @model_validator(mode="after")
    def _check_target(self) -> "RedditOptions":
        if not self.subreddit and self.search_terms is None:
            raise ValueError("Either subreddit or search_terms required")
        if self.search_terms is not None and not self.search_terms:
            raise ValueError("search_terms cannot be empty")
        if self.content_type == "comments" and self.search_terms:
            raise ValueError("search_terms is not supported with content_type=comments")
        if self.content_type == "comments" and not self.subreddit:
            raise ValueError("content_type=comments requires a subreddit")
        return self


class HackerNewsOptions(BaseModel):
    source: Literal["hackernews"] = "hackernews"
    search_query: str = Field(..., min_length=1)
    content_type: Literal["story", "comment", "ask_hn", "show_hn"] = "story"
    lookback_days: LookbackDays = 365
    max_pages: MaxPages | None = None
    min_points_for_content: int = Field(50, ge=0)
    max_content_fetches: int = Field(30, ge=0, le=500)

    @model_validator(mode="after")
    def _check_query(self) -> "HackerNewsOptions":
        if not self.search_query.strip():
            raise ValueError("search_query cannot be empty or whitespace only")
        return self


class GitHubOptions(BaseModel):
    source: Literal["github"] = "github"
    repo_owner: str = Field(..., min_length=1)
    repo_name: str = Field(..., min_length=1)
    content_type: Literal["issues", "pull_requests", "issue_comments", "pr_comments"] = "issues"
    labels_filter: list[str] | None = None
    lookback_days: LookbackDays = 365
    max_pages: MaxPages | None = None


class TrustpilotOptions(BaseModel):
    source: Literal["trustpilot"] = "trustpilot"
    business_url: str | None = None
    business_name: str | None = Field(None, min_length=1)
    lookback_days: LookbackDays = 365
    max_pages: MaxPages | None = None

    @model_validator(mode="after")
    def _check_business(self) -> "TrustpilotOptions":
        if not self.business_url and not self.business_name:
            raise ValueError("Either business_url or business_name required")
        if self.business_url and not re.match(r"^https?://", self.business_url):
            raise ValueError("business_url must be an http(s) URL")
        return self

    @property
    def review_url(self) -> str:
        return self.business_url or f"https://www.trustpilot.com/review/{self.business_name}"


class AppStoreOptions(BaseModel):
    source: Literal["ios_appstore"] = "ios_appstore"
    app_id: str = Field(..., pattern=r"^\d+$")
    country: str = Field("us", min_length=2, max_length=2)
    max_pages: int | None = Field(None, ge=1, le=10)


class GooglePlayOptions(BaseModel):
    source: Literal["google_play"] = "google_play"
    app_id: str = Field(..., min_length=1)
    country: str = Field("us", min_length=2, max_length=2)
    lang: str = Field("en", min_length=2, max_length=5)
    max_pages: int | None = Field(None, ge=1, le=20)


class GoogleMapsOptions(BaseModel):
    source: Literal["gmaps"] = "gmaps"
    place_id: str | None = Field(None, min_length=1)
    business_name: str | None = Field(None, min_length=1)
    language: str = Field("en", min_length=2, max_length=5)

    @model_validator(mode="after")
    def _check_place(self) -> "GoogleMapsOptions":
        if not self.place_id and not self.business_name:
            raise ValueError("Either place_id or business_name required")
        return self


SourceOptions = Annotated[
    Union[
        RedditOptions,
        HackerNewsOptions,
        GitHubOptions,
        TrustpilotOptions,
        AppStoreOptions,
        GooglePlayOptions,
        GoogleMapsOptions,
    ],
    Field(discriminator="source"),
]

_options_adapter = TypeAdapter(SourceOptions)


def parse_options(data: dict) -> BaseModel:
    """Validate a raw options dict. Raises InvalidConfig on bad input."""
    try:
        return _options_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidConfig(f"Invalid source options: {e}") from e
