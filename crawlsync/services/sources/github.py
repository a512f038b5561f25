"""GitHub issues, pull requests and their comments via the REST API.

Pages are linked through the ``Link: <...>; rel="next"`` header; the full
next-page URL is the cursor, so an interrupted backlog resumes exactly where
it stopped. Issue and PR listings are sorted by update time but stamped by
creation time, so they are UNORDERED; comment listings are newest-first.
"""

import re
from datetime import datetime, timedelta
from typing import Any, Mapping

import httpx

from crawlsync.config import settings
from crawlsync.schemas.checkpoints import GitHubCheckpoint
from crawlsync.schemas.options import GitHubOptions
from crawlsync.services.collector.base import (
    ContentItem,
    FetchContext,
    Ordering,
    PageResult,
    SourceStrategy,
)
from crawlsync.services.collector.errors import ParseError, UpstreamServerError

GITHUB_API = "https://api.github.com"
PAGE_SIZE = 100

ISSUE_LINK_RE = re.compile(r"/issues/(\d+)#")
PULL_LINK_RE = re.compile(r"/pull/(\d+)#")


def open_client(options: GitHubOptions, secrets: Mapping[str, str]) -> httpx.AsyncClient:
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
        "User-Agent": settings.user_agent,
    }
    token = secrets.get("GITHUB_TOKEN")
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(
        timeout=settings.request_timeout_seconds,
        follow_redirects=True,
        headers=headers,
    )


def _since(ctx: FetchContext) -> datetime | None:
    if ctx.checkpoint is not None and ctx.checkpoint.last_timestamp is not None:
        return ctx.checkpoint.last_timestamp
    return ctx.lookback_start


def build_listing_request(options: GitHubOptions, since: datetime | None) -> tuple[str, dict]:
    repo = f"{GITHUB_API}/repos/{options.repo_owner}/{options.repo_name}"
    params: dict[str, Any] = {"per_page": PAGE_SIZE}

    if options.content_type in ("issues", "pull_requests"):
        url = f"{repo}/issues"
        params.update(state="all", sort="updated", direction="desc")
        if options.labels_filter:
            params["labels"] = ",".join(options.labels_filter)
    elif options.content_type == "issue_comments":
        url = f"{repo}/issues/comments"
        params.update(sort="created", direction="desc")
    else:
        url = f"{repo}/pulls/comments"
        params.update(sort="created", direction="desc")

    if since is not None:
        params["since"] = since.strftime("%Y-%m-%dT%H:%M:%SZ")
    return url, params


async def fetch_page(ctx: FetchContext, cursor: str | None) -> PageResult:
    if cursor and cursor.startswith("https://"):
        response = await ctx.limiter.request(ctx.client, "GET", cursor)
    else:
        url, params = build_listing_request(ctx.options, _since(ctx))
        response = await ctx.limiter.request(ctx.client, "GET", url, params=params)

    items = ctx.limiter.decode_json(response)
    if not isinstance(items, list):
        raise UpstreamServerError("GitHub listing did not return a JSON array", source="github")

    next_link = response.links.get("next", {}).get("url")
    return PageResult(items=items, next_cursor=next_link or None, raw_count=len(items))


def list_ordering(options: GitHubOptions) -> Ordering:
    if options.content_type in ("issues", "pull_requests"):
        return Ordering.UNORDERED
    return Ordering.DESCENDING


def keep_item(raw: dict, options: GitHubOptions) -> bool:
    """The issues endpoint returns PRs too; keep only the requested kind."""
    if options.content_type == "issues":
        return not raw.get("pull_request")
    if options.content_type == "pull_requests":
        return bool(raw.get("pull_request"))
    return True


def _engagement(raw: dict) -> dict:
    reactions = raw.get("reactions") or {}
    return {
        "score": reactions.get("total_count", 0),
        "upvotes": reactions.get("+1", 0),
        "downvotes": reactions.get("-1", 0),
    }


def _created_at(raw: dict) -> datetime:
    created = raw.get("created_at")
    if not created:
        raise ParseError(f"GitHub item {raw.get('id')!r} has no created_at")
    return datetime.fromisoformat(created.replace("Z", "+00:00"))


def transform_issue(raw: dict, options: GitHubOptions) -> ContentItem:
    is_pr = options.content_type == "pull_requests"
    prefix = "pr" if is_pr else "issue"
    engagement = {**_engagement(raw), "reply_count": raw.get("comments", 0)}
    metadata = {
        **engagement,
        "type": prefix,
        "number": raw["number"],
        "labels": [label.get("name") for label in raw.get("labels", [])],
        "state": raw.get("state"),
        "updated_at": raw.get("updated_at"),
    }
    if is_pr:
        metadata["is_pr"] = True
        metadata["merged_at"] = (raw.get("pull_request") or {}).get("merged_at")

    return ContentItem(
        external_id=f"{prefix}_{options.repo_owner}_{options.repo_name}_{raw['number']}",
        title=raw.get("title", ""),
        content=(raw.get("body") or "").strip(),
        author=(raw.get("user") or {}).get("login", "Unknown"),
        url=raw.get("html_url", ""),
        published_at=_created_at(raw),
        score=float(engagement["score"]),
        metadata=metadata,
    )


def transform_comment(raw: dict, options: GitHubOptions) -> ContentItem:
    parent_type = "issue" if options.content_type == "issue_comments" else "pr"
    match = re.search(r"/(?:issues|pull)/(\d+)#", raw.get("html_url", ""))
    engagement = _engagement(raw)
    return ContentItem(
        external_id=f"{parent_type}_comment_{options.repo_owner}_{options.repo_name}_{raw['id']}",
        content=raw.get("body") or "",
        author=(raw.get("user") or {}).get("login", "Unknown"),
        url=raw.get("html_url", ""),
        published_at=_created_at(raw),
        score=float(engagement["score"]),
        metadata={
            **engagement,
            "type": f"{parent_type}_comment",
            "comment_id": raw["id"],
            "parent_type": parent_type,
            "parent_number": int(match.group(1)) if match else None,
            "updated_at": raw.get("updated_at"),
        },
    )


def transform(raw: dict, options: GitHubOptions) -> ContentItem:
    if options.content_type in ("issues", "pull_requests"):
        return transform_issue(raw, options)
    return transform_comment(raw, options)


def parent_of(item: ContentItem, options: GitHubOptions) -> str | None:
    """Comments point at their issue/PR, parsed from the comment's html_url."""
    if options.content_type == "issue_comments":
        match = ISSUE_LINK_RE.search(item.url)
        prefix = "issue"
    elif options.content_type == "pr_comments":
        match = PULL_LINK_RE.search(item.url)
        prefix = "pr"
    else:
        return None
    if match is None:
        return None
    return f"{prefix}_{options.repo_owner}_{options.repo_name}_{match.group(1)}"


STRATEGY = SourceStrategy(
    kind="github",
    fetch_page=fetch_page,
    transform=transform,
    checkpoint_model=GitHubCheckpoint,
    ordering=list_ordering,
    filter_item=keep_item,
    parent_of=parent_of,
    open_client=open_client,
    rate_limit_seconds=1.0,
    max_pages=50,
    recommended_interval=timedelta(hours=1),
)
