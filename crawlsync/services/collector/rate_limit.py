import asyncio
import json
import logging
import time
from typing import Any

import httpx

from crawlsync.services.collector.errors import classify_exception, classify_response

logger = logging.getLogger("crawlsync.collector.rate_limit")


class RateLimiter:
    """Minimum-interval limiter wrapped around every outbound call of a run.

    The first call goes out immediately; later calls sleep for whatever is
    left of ``min_interval`` since the previous one. Failures are classified
    and raised, never retried here.
    """

    def __init__(self, min_interval: float = 1.0, source: str | None = None) -> None:
        self._interval = max(0.0, min_interval)
        self._source = source
        self._lock = asyncio.Lock()
        self._last_call: float | None = None
        self.calls = 0

    @property
    def min_interval(self) -> float:
        return self._interval

    @property
    def source(self) -> str | None:
        return self._source

    async def wait(self) -> None:
        async with self._lock:
            if self._last_call is not None:
                elapsed = time.monotonic() - self._last_call
                if elapsed < self._interval:
                    await asyncio.sleep(self._interval - elapsed)
            self._last_call = time.monotonic()
            self.calls += 1

    async def request(
        self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
    ) -> httpx.Response:
        await self.wait()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise classify_exception(e, self._source) from e

        if response.is_error:
            error = classify_response(response, self._source)
            logger.warning(
                "source=%s status=%d kind=%s url=%s",
                self._source,
                response.status_code,
                error.kind,
                url,
            )
            raise error
        return response

    async def get_json(self, client: httpx.AsyncClient, url: str, **kwargs: Any) -> Any:
        response = await self.request(client, "GET", url, **kwargs)
        return self.decode_json(response)

    def decode_json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise classify_exception(e, self._source) from e
