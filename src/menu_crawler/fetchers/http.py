# src/menu_crawler/fetchers/http.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

logger = logging.getLogger(__name__)


@dataclass
class HttpResponse:
    url: str
    status: int
    body: bytes
    content_type: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400


class HttpFetcher:
    """
    Small wrapper around aiohttp used to download menu file candidates.
    - Handles timeouts
    - Retries on transient network errors
    - Reuses one session for many requests
    """

    def __init__(
        self,
        *,
        timeout_seconds: int = 25,
        max_concurrency: int = 10,
    ) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._headers = {
            "Accept": "image/avif,image/webp,image/png,image/jpeg,application/pdf,*/*;q=0.8",
            "Accept-Language": "de-DE,de;q=0.9,en;q=0.5",
            "Accept-Ranges": "none",
        }
        self._session: Optional[aiohttp.ClientSession] = None
        self._sem = asyncio.Semaphore(max_concurrency)

    async def __aenter__(self) -> "HttpFetcher":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=self._headers)

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    def _require_session(self) -> aiohttp.ClientSession:
        if not self._session:
            raise RuntimeError("HttpFetcher session not started. Use: `async with HttpFetcher() as f:`")
        return self._session

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.6, min=0.6, max=6),
        retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
    )
    async def fetch_bytes(self, url: str, *, user_agent: str | None = None, referer: str | None = None) -> HttpResponse:
        """
        Download `url` and return the raw body.
        Retries on transient network errors.
        """
        session = self._require_session()
        headers = {}
        if user_agent:
            headers["User-Agent"] = user_agent
        if referer:
            headers["Referer"] = referer

        async with self._sem:
            logger.debug("HTTP GET %s", url)
            async with session.get(url, headers=headers, allow_redirects=True) as resp:
                content_type = resp.headers.get("Content-Type")
                body = await resp.read()
                return HttpResponse(
                    url=str(resp.url),
                    status=resp.status,
                    body=body,
                    content_type=content_type,
                )
