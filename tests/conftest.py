from __future__ import annotations

from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from menu_crawler.cache import CrawlCache
from menu_crawler.extractors.base import BaseExtractor
from menu_crawler.models import Extraction, ExtractionMethod
from menu_crawler.queues import QueueSet


class FakeExtractor(BaseExtractor):
    """Returns canned extractions and records every call it gets."""

    def __init__(self, method: ExtractionMethod, results: Optional[List[Optional[Extraction]]] = None) -> None:
        self.method = method
        self._results = list(results or [])
        self.calls: List[Optional[str]] = []

    async def try_extract(self, page, resource=None):
        self.calls.append(resource)
        if not self._results:
            return None
        return self._results.pop(0)


class FakeLinkExtractor:
    def __init__(self, links: Optional[Dict[str, List[str]]] = None) -> None:
        self.links = links or {}
        self.calls: List[str] = []

    async def extract_links(self, page, base_url=None):
        self.calls.append(base_url)
        return list(self.links.get(base_url, []))


def make_session(navigate_error: Optional[Exception] = None) -> MagicMock:
    session = MagicMock(name="BrowserSession")
    page = MagicMock(name="Page")
    page.url = "about:blank"
    session.open_page = AsyncMock(return_value=page)
    session.navigate = AsyncMock(side_effect=navigate_error)
    session.wait_for_body = AsyncMock()
    session.close_page = AsyncMock()
    return session


@pytest.fixture
def cache(tmp_path):
    c = CrawlCache(str(tmp_path / "cache"))
    yield c
    c.close()


@pytest.fixture
def queues(tmp_path):
    q = QueueSet(str(tmp_path / "queues"), poll_interval=0.01)
    yield q
    q.close()
