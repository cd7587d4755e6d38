# src/menu_crawler/extractors/files.py
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import unquote, urljoin, urlparse

import aiohttp
from playwright.async_api import Error as PlaywrightError, Page, TimeoutError as PlaywrightTimeoutError

from menu_crawler.extractors.base import BaseExtractor
from menu_crawler.fetchers.http import HttpFetcher, HttpResponse
from menu_crawler.models import Extraction, ExtractionMethod

logger = logging.getLogger(__name__)

MIN_FILE_SIZE = 30 * 1024  # skip icons and logos

IGNORED_DOMAINS = {
    "gstatic.com",
    "google.com",
    "googleapis.com",
    "akamaihd.net",
    "cloudflare.com",
    "fbcdn.net",
    "twimg.com",
    "fastly.net",
    "yimg.com",
}
IGNORED_HOST_PREFIXES = ("cdn.",)

MENU_KEYWORDS = ["menu", "speisekarte", "karte", "food", "dishes"]

FILE_EXTENSION = re.compile(r"\.(png|jpe?g|pdf)$", re.IGNORECASE)

# Menus are bigger than UI icons and not as narrow/wide as banners.
MIN_WIDTH = 300
MIN_HEIGHT = 400
ASPECT_RATIO_MIN = 0.5
ASPECT_RATIO_MAX = 2.5

_CANDIDATE_SELECTOR = "a[href], img[src], source[src], object[data], embed[src]"

_RENDERED_JS = f"""
() => document.querySelectorAll('{_CANDIDATE_SELECTOR}').length > 0
  || document.readyState === 'complete'
"""

_RAW_LINKS_JS = f"""
() => {{
  const fromDom = Array.from(document.querySelectorAll('{_CANDIDATE_SELECTOR}'))
    .map((el) => el.getAttribute('href') || el.getAttribute('src') || el.getAttribute('data'));
  const fromNetwork = performance.getEntriesByType('resource').map((entry) => entry.name);
  return fromDom.concat(fromNetwork).filter(Boolean);
}}
"""

# Natural size of the <img> showing `url`; loads it off-DOM if the page has none.
_IMAGE_SIZE_JS = """
async ([url, timeoutMs]) => {
  const img = Array.from(document.images).find((i) => i.currentSrc === url || i.src === url);
  if (img && img.complete && img.naturalWidth) {
    return [img.naturalWidth, img.naturalHeight];
  }
  return await new Promise((resolve) => {
    const probe = new Image();
    const timer = setTimeout(() => resolve(null), timeoutMs);
    probe.onload = () => { clearTimeout(timer); resolve([probe.naturalWidth, probe.naturalHeight]); };
    probe.onerror = () => { clearTimeout(timer); resolve(null); };
    probe.src = url;
  });
}
"""


@dataclass
class FileCandidate:
    url: str
    response: HttpResponse


def is_pdf(url: str, content_type: Optional[str] = None) -> bool:
    if urlparse(url).path.lower().endswith(".pdf"):
        return True
    return bool(content_type) and "application/pdf" in content_type.lower()


def is_ignored_domain(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    if host.startswith(IGNORED_HOST_PREFIXES):
        return True
    return any(host == d or host.endswith("." + d) for d in IGNORED_DOMAINS)


def contains_menu_keywords(url: str) -> bool:
    path = unquote(urlparse(url).path).lower()
    return any(keyword in path for keyword in MENU_KEYWORDS)


def passes_url_rules(url: str) -> bool:
    return not is_ignored_domain(url) and contains_menu_keywords(url)


def matches_image_dimensions(width: float, height: float) -> bool:
    if width <= MIN_WIDTH or height <= MIN_HEIGHT:
        return False
    ratio = width / height
    return ASPECT_RATIO_MIN < ratio < ASPECT_RATIO_MAX


def candidate_urls(raw_links: Sequence[str], page_url: str) -> List[str]:
    """Resolve against the page, keep png/jpg/jpeg/pdf, drop duplicates (first seen wins)."""
    seen: Dict[str, None] = {}
    for raw in raw_links:
        try:
            absolute = urljoin(page_url, raw.strip())
        except ValueError:
            continue
        parsed = urlparse(absolute)
        if parsed.scheme not in ("http", "https"):
            continue
        if FILE_EXTENSION.search(parsed.path):
            seen.setdefault(absolute, None)
    return list(seen)


def storage_path(url: str) -> Tuple[str, str]:
    """(hostname, filename) under which a downloaded file is stored."""
    parsed = urlparse(url)
    hostname = parsed.hostname or "unknown"
    filename = PurePosixPath(unquote(parsed.path)).name or "index"
    filename = re.sub(r"[^\w.\-]", "_", filename)
    return hostname, filename


def _write_file(full_path: Path, body: bytes) -> None:
    full_path.parent.mkdir(parents=True, exist_ok=True)
    full_path.write_bytes(body)


class FileExtractor(BaseExtractor):
    """
    Finds menu images and PDFs linked or loaded by the page.
    Acceptance order for each candidate:
    1. PDF (by path or content type) -> accept
    2. ignored CDN/ad host, or no menu keyword in the path -> reject
    3. image: content type image/*, >= MIN_FILE_SIZE bytes, menu-like pixel size
    """

    method = ExtractionMethod.FILE

    def __init__(
        self,
        fetcher: HttpFetcher,
        *,
        upload_root: str = "uploads",
        render_timeout_seconds: int = 10,
        min_file_size: int = MIN_FILE_SIZE,
    ) -> None:
        self._fetcher = fetcher
        self._upload_root = Path(upload_root)
        self._render_timeout = render_timeout_seconds * 1000
        self._min_file_size = min_file_size

    async def try_extract(self, page: Page, resource: Optional[str] = None) -> Optional[Extraction]:
        candidates = await self.extract_files(page)
        if not candidates:
            logger.debug("No menu files found on %s", page.url)
            return None

        saved = await self.save_files(candidates.values())
        if not saved:
            return None
        return Extraction(data=saved)

    async def extract_files(self, page: Page) -> Dict[str, FileCandidate]:
        await self._wait_for_render(page)
        raw_links = await page.evaluate(_RAW_LINKS_JS)
        urls = candidate_urls(raw_links, page.url)
        logger.debug("%d file candidates on %s", len(urls), page.url)

        accepted: Dict[str, FileCandidate] = {}
        for url in urls:
            candidate = await self._check_candidate(page, url)
            if candidate is not None:
                accepted[url] = candidate
        return accepted

    async def save_files(self, candidates) -> List[str]:
        """Write every accepted file to <upload_root>/<hostname>/<filename>; return the relative paths."""
        saved: List[str] = []
        for candidate in candidates:
            hostname, filename = storage_path(candidate.url)
            relative = f"{hostname}/{filename}"
            try:
                await asyncio.to_thread(_write_file, self._upload_root / hostname / filename, candidate.response.body)
            except OSError as e:
                logger.error("Failed to save file %s: %s", candidate.url, e)
                continue
            saved.append(relative)
            logger.info("File saved: %s", relative)
        return saved

    async def _wait_for_render(self, page: Page) -> None:
        try:
            await page.wait_for_function(_RENDERED_JS, timeout=self._render_timeout)
        except PlaywrightTimeoutError:
            logger.warning("Page %s did not fully render within %d ms", page.url, self._render_timeout)

    async def _check_candidate(self, page: Page, url: str) -> Optional[FileCandidate]:
        # a non-PDF path can only be accepted through the URL rules, so skip the download early
        if not is_pdf(url) and not passes_url_rules(url):
            logger.debug("Skipping non-menu file: %s", url)
            return None

        try:
            user_agent = await page.evaluate("() => navigator.userAgent")
            response = await self._fetcher.fetch_bytes(url, user_agent=user_agent, referer=page.url)
        except (aiohttp.ClientError, asyncio.TimeoutError, PlaywrightError) as e:
            logger.warning("Skipping file that failed to download: %s (%s)", url, e)
            return None

        if not response.ok:
            logger.debug("Skipping file with status %d: %s", response.status, url)
            return None

        if is_pdf(url, response.content_type):
            return FileCandidate(url=url, response=response)

        if not passes_url_rules(url):
            logger.debug("Skipping non-menu file: %s", url)
            return None

        if not await self._is_matching_image(page, url, response):
            return None
        return FileCandidate(url=url, response=response)

    async def _is_matching_image(self, page: Page, url: str, response: HttpResponse) -> bool:
        if not (response.content_type or "").lower().startswith("image/"):
            logger.debug("Skipping non-image response file: %s", url)
            return False
        if len(response.body) < self._min_file_size:
            logger.debug("Skipping small file (%d bytes): %s", len(response.body), url)
            return False

        try:
            size = await page.evaluate(_IMAGE_SIZE_JS, [url, self._render_timeout])
        except PlaywrightError as e:
            logger.warning("Could not measure image %s: %s", url, e)
            return False
        if not size:
            return False

        width, height = size
        if not matches_image_dimensions(width, height):
            logger.debug("Skipping image with non-menu dimensions %dx%d: %s", width, height, url)
            return False
        return True
