# src/menu_crawler/cache.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import diskcache

from menu_crawler.models import ExtractionStrategy, LinkCrawlState

logger = logging.getLogger(__name__)

STRATEGY_PREFIX = "strategy"
LINK_PREFIX = "link"


def strategy_key(hostname: str) -> str:
    return f"{STRATEGY_PREFIX}:{hostname}"


def link_key(url: str) -> str:
    return f"{LINK_PREFIX}:{url}"


class CrawlCache:
    """
    Shared key/value store for per-hostname strategies and per-link crawl state.
    - Backed by diskcache (safe across processes, TTL per entry)
    - Every call is a single atomic get or set; nothing here locks across calls
    """

    def __init__(
        self,
        directory: str,
        *,
        strategy_ttl_seconds: int = 2592000,
        link_ttl_seconds: int = 2592000,
    ) -> None:
        self._cache = diskcache.Cache(directory)
        self._strategy_ttl = strategy_ttl_seconds
        self._link_ttl = link_ttl_seconds
        logger.info("Crawl cache opened at %s", directory)

    def close(self) -> None:
        self._cache.close()

    async def _get(self, key: str) -> Any:
        return await asyncio.to_thread(self._cache.get, key)

    async def _set(self, key: str, value: Any, expire: Optional[int]) -> None:
        await asyncio.to_thread(self._cache.set, key, value, expire)

    async def get_strategy(self, hostname: str) -> Optional[ExtractionStrategy]:
        raw = await self._get(strategy_key(hostname))
        if not raw:
            return None
        try:
            return ExtractionStrategy.from_dict(raw)
        except (KeyError, ValueError, TypeError):
            logger.warning("Ignoring malformed strategy for %s: %r", hostname, raw)
            return None

    async def set_strategy(self, hostname: str, strategy: ExtractionStrategy) -> None:
        await self._set(strategy_key(hostname), strategy.to_dict(), self._strategy_ttl)

    async def get_link_state(self, url: str) -> Optional[LinkCrawlState]:
        raw = await self._get(link_key(url))
        if not raw:
            return None
        try:
            return LinkCrawlState.from_dict(raw)
        except (KeyError, ValueError, TypeError):
            logger.warning("Ignoring malformed link state for %s: %r", url, raw)
            return None

    async def set_link_state(self, url: str, state: LinkCrawlState) -> None:
        await self._set(link_key(url), state.to_dict(), self._link_ttl)
