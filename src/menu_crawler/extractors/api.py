# src/menu_crawler/extractors/api.py
from __future__ import annotations

import logging
from typing import Optional

from playwright.async_api import Page

from menu_crawler.extractors.base import BaseExtractor
from menu_crawler.models import Extraction, ExtractionMethod

logger = logging.getLogger(__name__)


class ApiExtractor(BaseExtractor):
    """
    Placeholder for sites that expose their menu through a JSON API
    (ordering platforms etc.). Finds nothing yet, so the pipeline moves on.
    """

    method = ExtractionMethod.API

    async def try_extract(self, page: Page, resource: Optional[str] = None) -> Optional[Extraction]:
        logger.debug("API extraction not available for %s", page.url)
        return None
