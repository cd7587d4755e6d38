# src/menu_crawler/errors.py
from __future__ import annotations


class CrawlerError(Exception):
    """Base class for errors raised by the crawler."""


class NavigationError(CrawlerError):
    """The page did not load. The job is failed, never retried as-is."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Navigation to {url} failed: {reason}")
