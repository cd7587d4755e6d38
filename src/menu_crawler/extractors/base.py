# src/menu_crawler/extractors/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from playwright.async_api import Page

from menu_crawler.models import Extraction, ExtractionMethod


class BaseExtractor(ABC):
    """
    Contract for all extraction strategies:
    input: a loaded page (+ the resource cached for this host, if any)
    output: Extraction with non-empty data, or None when nothing was found
    """

    method: ExtractionMethod

    @abstractmethod
    async def try_extract(self, page: Page, resource: Optional[str] = None) -> Optional[Extraction]:
        raise NotImplementedError
