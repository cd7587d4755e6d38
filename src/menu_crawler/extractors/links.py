# src/menu_crawler/extractors/links.py
from __future__ import annotations

import logging
from typing import Iterable, List
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup
from playwright.async_api import Page

logger = logging.getLogger(__name__)


def filter_same_domain(raw_links: Iterable[str], base_url: str) -> List[str]:
    """Resolve hrefs against `base_url` and keep the ones on the same hostname, once each."""
    base_host = urlparse(base_url).hostname
    links = set()
    for raw in raw_links:
        if not raw:
            continue
        try:
            absolute, _fragment = urldefrag(urljoin(base_url, raw.strip()))
            host = urlparse(absolute).hostname
        except ValueError:
            continue
        if host and host == base_host:
            links.add(absolute)
    return list(links)


class LinkExtractor:
    """Same-domain links of an already loaded page."""

    async def extract_links(self, page: Page, base_url: str | None = None) -> List[str]:
        html = await page.content()
        soup = BeautifulSoup(html, "lxml")
        hrefs = [a.get("href") for a in soup.find_all("a", href=True)]
        links = filter_same_domain(hrefs, base_url or page.url)
        logger.debug("Found %d same-domain links on %s", len(links), base_url or page.url)
        return links
