"""Failure taxonomy for collection runs.

Every outbound call failure is classified into one of the exceptions below.
The engine never retries on its own: it surfaces the classified error to the
run caller, which decides whether to abort or schedule a later re-run.
Only ``ParseError`` (one malformed raw item) is handled inside a run.
"""

import json
import time
from email.utils import parsedate_to_datetime

import httpx


class CollectorError(Exception):
    kind = "collector_error"
    retryable = False

    def __init__(self, message: str, *, source: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.source = source
        self.status_code = status_code


class RateLimited(CollectorError):
    kind = "rate_limited"
    retryable = True

    def __init__(self, message: str, *, retry_after: float | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class AuthFailed(CollectorError):
    kind = "auth_failed"


class NotFound(CollectorError):
    kind = "not_found"


class Forbidden(CollectorError):
    kind = "forbidden"


class InvalidConfig(CollectorError):
    kind = "invalid_config"


class TransientNetwork(CollectorError):
    kind = "network_error"
    retryable = True


class UpstreamServerError(CollectorError):
    kind = "server_error"
    retryable = True


class ClientError(CollectorError):
    kind = "client_error"


class ParseError(CollectorError):
    kind = "parse_error"


def is_retryable(error: BaseException) -> bool:
    """Whether a caller may schedule a re-run of the whole sync."""
    return isinstance(error, CollectorError) and error.retryable


def parse_retry_after(headers: httpx.Headers, now: float | None = None) -> float | None:
    """Seconds to wait, from Retry-After or X-RateLimit-Reset headers."""
    now = time.time() if now is None else now

    raw = headers.get("retry-after")
    if raw:
        raw = raw.strip()
        if raw.isdigit():
            return float(raw)
        try:
            when = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            when = None
        if when is not None:
            return max(0.0, when.timestamp() - now)

    reset = headers.get("x-ratelimit-reset")
    if reset and reset.strip().isdigit():
        return max(0.0, float(reset) - now)
    return None


def _rate_limit_exhausted(headers: httpx.Headers) -> bool:
    return headers.get("x-ratelimit-remaining", "").strip() == "0"


def classify_response(response: httpx.Response, source: str | None = None) -> CollectorError:
    """Map a failed HTTP response onto the taxonomy."""
    status = response.status_code
    try:
        request_url = response.request.url
    except RuntimeError:  # response built without a request
        url = ""
    else:
        # Query strings can carry API keys
        url = f"{request_url.scheme}://{request_url.host}{request_url.path}"
    label = source or "upstream"

    if status == 429 or (status == 403 and _rate_limit_exhausted(response.headers)):
        retry_after = parse_retry_after(response.headers)
        return RateLimited(
            f"{label} rate limit exceeded (HTTP {status})",
            retry_after=retry_after,
            source=source,
            status_code=status,
        )
    if status == 401:
        return AuthFailed(f"{label} rejected credentials for {url}", source=source, status_code=status)
    if status == 403:
        return Forbidden(
            f"{label} access forbidden for {url}; the resource may be private",
            source=source,
            status_code=status,
        )
    if status == 404:
        return NotFound(f"{label} resource not found: {url}", source=source, status_code=status)
    if status >= 500:
        return UpstreamServerError(f"{label} server error (HTTP {status})", source=source, status_code=status)
    return ClientError(f"{label} request failed (HTTP {status}) for {url}", source=source, status_code=status)


def classify_exception(exc: BaseException, source: str | None = None) -> CollectorError:
    """Map a transport-layer exception onto the taxonomy."""
    if isinstance(exc, CollectorError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_response(exc.response, source)
    if isinstance(exc, httpx.TimeoutException):
        return TransientNetwork(f"{source or 'upstream'} request timed out: {exc}", source=source)
    if isinstance(exc, httpx.TransportError):
        return TransientNetwork(f"{source or 'upstream'} network error: {exc}", source=source)
    if isinstance(exc, json.JSONDecodeError):
        return UpstreamServerError(f"{source or 'upstream'} returned malformed JSON: {exc}", source=source)
    return CollectorError(f"{source or 'upstream'} request failed: {exc}", source=source)
