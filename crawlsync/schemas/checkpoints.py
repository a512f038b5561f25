"""Per-source resume state.

Each source kind has its own checkpoint variant carrying only the fields that
source needs. Variants are discriminated by ``kind`` so a stored JSON blob
always loads back into the right class.
"""

from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class CheckpointBase(BaseModel):
    last_timestamp: datetime | None = None
    # Set only while a truncated walk has pages left. The next run resumes
    # from it and stops at backlog_stop_timestamp instead of last_timestamp.
    pagination_token: str | None = None
    backlog_stop_timestamp: datetime | None = None
    backlog_oldest_timestamp: datetime | None = None
    total_items_processed: int = 0
    updated_at: datetime | None = None

    @field_validator(
        "last_timestamp", "backlog_stop_timestamp", "backlog_oldest_timestamp", "updated_at"
    )
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class RedditCheckpoint(CheckpointBase):
    kind: Literal["reddit"] = "reddit"
    processed_thread_ids: list[str] = Field(default_factory=list)


class HackerNewsCheckpoint(CheckpointBase):
    kind: Literal["hackernews"] = "hackernews"
    processed_story_ids: list[str] = Field(default_factory=list)


class GitHubCheckpoint(CheckpointBase):
    kind: Literal["github"] = "github"


class TrustpilotCheckpoint(CheckpointBase):
    kind: Literal["trustpilot"] = "trustpilot"
    last_page: int | None = None


class AppStoreCheckpoint(CheckpointBase):
    kind: Literal["ios_appstore"] = "ios_appstore"
    last_review_id: str | None = None


class GooglePlayCheckpoint(CheckpointBase):
    kind: Literal["google_play"] = "google_play"


class GoogleMapsCheckpoint(CheckpointBase):
    kind: Literal["gmaps"] = "gmaps"
    last_review_time: int | None = None  # unix seconds


Checkpoint = Annotated[
    Union[
        RedditCheckpoint,
        HackerNewsCheckpoint,
        GitHubCheckpoint,
        TrustpilotCheckpoint,
        AppStoreCheckpoint,
        GooglePlayCheckpoint,
        GoogleMapsCheckpoint,
    ],
    Field(discriminator="kind"),
]

_checkpoint_adapter = TypeAdapter(Checkpoint)


def load_checkpoint(data: dict | None) -> CheckpointBase | None:
    """Parse a stored checkpoint blob. Missing state means a first run."""
    if not data:
        return None
    return _checkpoint_adapter.validate_python(data)


def dump_checkpoint(checkpoint: CheckpointBase) -> dict:
    return checkpoint.model_dump(mode="json")


def cap_tracked_ids(ids: list[str], limit: int) -> list[str]:
    """Keep the most recently added ``limit`` ids, preserving order."""
    if limit <= 0 or len(ids) <= limit:
        return list(ids)
    return list(ids[-limit:])
