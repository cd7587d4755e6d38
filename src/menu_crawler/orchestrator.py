# src/menu_crawler/orchestrator.py
from __future__ import annotations

import logging
import sqlite3
from typing import Dict, Optional, Sequence
from urllib.parse import urlparse

import diskcache
from playwright.async_api import Page

from menu_crawler.cache import CrawlCache
from menu_crawler.extractors.base import BaseExtractor
from menu_crawler.extractors.links import LinkExtractor
from menu_crawler.fetchers.browser import BrowserSession
from menu_crawler.models import (
    CrawlJob,
    ExtractionMethod,
    ExtractionResult,
    ExtractionStrategy,
    LinkCrawlState,
    LinkStatus,
)
from menu_crawler.queues import DurableQueue

logger = logging.getLogger(__name__)

MAX_LINK_ATTEMPTS = 3

# What a cache read/write can raise; these never abort a job.
CACHE_ERRORS = (OSError, sqlite3.Error, diskcache.Timeout)


class JobLogger(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"Job ID: {self.extra['job_id']} URL: {self.extra['url']} - {msg}", kwargs


class ExtractionOrchestrator:
    """
    Runs one crawl job end to end:
    load page -> extract (cached strategy or full pipeline) -> queue new links -> publish result.

    Extractors are tried in the given order; the first one returning data wins
    and is remembered for the hostname. A host with a remembered strategy only
    ever runs that strategy.
    """

    def __init__(
        self,
        session: BrowserSession,
        cache: CrawlCache,
        extractors: Sequence[BaseExtractor],
        link_extractor: LinkExtractor,
        *,
        subpage_queue: DurableQueue,
        result_queue: DurableQueue,
        max_link_attempts: int = MAX_LINK_ATTEMPTS,
    ) -> None:
        self._session = session
        self._cache = cache
        self._extractors = list(extractors)
        self._by_method: Dict[ExtractionMethod, BaseExtractor] = {e.method: e for e in self._extractors}
        self._links = link_extractor
        self._subpage_queue = subpage_queue
        self._result_queue = result_queue
        self._max_link_attempts = max_link_attempts

    async def process(self, job: CrawlJob) -> ExtractionResult:
        log = JobLogger(logger, {"job_id": job.job_id, "url": job.url})
        log.debug("Starting extraction")
        page: Optional[Page] = None

        try:
            page = await self._session.open_page()
            await self._session.navigate(page, job.url)
            await self._session.wait_for_body(page)

            hostname = urlparse(job.url).hostname or ""
            strategy = await self._cache.get_strategy(hostname)
            if strategy is not None:
                log.debug("Using cached method %s for %s", strategy.method.value, hostname)
                result = await self._run_cached(page, job, strategy)
            else:
                result = await self._run_pipeline(page, job, hostname, log)

            await self._set_link_status(job.url, LinkStatus.PROCESSED)
            await self._handle_links(page, job, log)
        except Exception as e:
            log.error("Extraction failed: %s", e, exc_info=True)
            await self._set_link_status(job.url, LinkStatus.FAILED)
            result = ExtractionResult(job_id=job.job_id, url=job.url, kind=job.kind, error=str(e) or type(e).__name__)
        finally:
            await self._session.close_page(page)

        await self._result_queue.publish(result.to_message())
        if result.failed:
            log.info("Published failure")
        else:
            log.info("Published %d items via %s", len(result.data), result.method.value if result.method else "none")
        return result

    async def _run_cached(self, page: Page, job: CrawlJob, strategy: ExtractionStrategy) -> ExtractionResult:
        extractor = self._by_method.get(strategy.method)
        extraction = await extractor.try_extract(page, strategy.resource) if extractor else None
        if not extraction or not extraction.data:
            return ExtractionResult(job_id=job.job_id, url=job.url, kind=job.kind)
        return ExtractionResult(
            job_id=job.job_id, url=job.url, kind=job.kind, method=strategy.method, data=extraction.data,
        )

    async def _run_pipeline(self, page: Page, job: CrawlJob, hostname: str, log: JobLogger) -> ExtractionResult:
        for extractor in self._extractors:
            log.debug("Attempting %s", extractor.method.value)
            extraction = await extractor.try_extract(page)
            if not extraction or not extraction.data:
                continue

            resource = extraction.resource if extractor.method is ExtractionMethod.HTML else None
            try:
                await self._cache.set_strategy(hostname, ExtractionStrategy(method=extractor.method, resource=resource))
            except CACHE_ERRORS as e:
                log.error("Could not cache strategy for %s: %s", hostname, e)
            log.debug("%s succeeded", extractor.method.value)
            return ExtractionResult(
                job_id=job.job_id, url=job.url, kind=job.kind, method=extractor.method, data=extraction.data,
            )

        log.debug("No extraction method found data")
        return ExtractionResult(job_id=job.job_id, url=job.url, kind=job.kind)

    async def _set_link_status(self, url: str, status: LinkStatus) -> None:
        try:
            previous = await self._cache.get_link_state(url)
            attempts = previous.attempts if previous and previous.attempts else 1
            await self._cache.set_link_state(url, LinkCrawlState(status=status, attempts=attempts))
        except CACHE_ERRORS as e:
            logger.error("Could not record %s for %s: %s", status.value, url, e)

    def next_attempt(self, state: Optional[LinkCrawlState]) -> Optional[int]:
        """
        Attempt number to enqueue a link with, or None to leave it alone.
        Queued/processed links are skipped; failed links come back until the bound is passed.
        """
        if state is None:
            return 1
        if state.status in (LinkStatus.QUEUED, LinkStatus.PROCESSED):
            return None
        attempts = state.attempts + 1
        if attempts > self._max_link_attempts:
            return None
        return attempts

    async def _handle_links(self, page: Page, job: CrawlJob, log: JobLogger) -> None:
        log.debug("Extracting links")
        links = await self._links.extract_links(page, job.url)
        if not links:
            log.debug("No links found")
            return

        for link in links:
            try:
                state = await self._cache.get_link_state(link)
            except CACHE_ERRORS as e:
                log.error("Could not read state of %s: %s", link, e)
                continue

            attempts = self.next_attempt(state)
            if attempts is None:
                log.debug("Skipping link %s (%s)", link, state.status.value if state else "?")
                continue

            try:
                await self._cache.set_link_state(link, LinkCrawlState(status=LinkStatus.QUEUED, attempts=attempts))
            except CACHE_ERRORS as e:
                log.error("Could not mark %s as queued: %s", link, e)
                continue

            log.info("Emitting subpage %s (attempt %d)", link, attempts)
            await self._subpage_queue.publish(CrawlJob.subpage(link).to_message())

    async def consume(self, queue: DurableQueue) -> None:
        """Worker loop: take a job, process it, acknowledge it. Runs until cancelled."""
        while True:
            delivery = await queue.get()
            message = delivery.message
            logger.debug("Received message: %r", message)

            try:
                job = CrawlJob.from_message(message)
            except (AttributeError, KeyError, ValueError, TypeError) as e:
                logger.error("Dropping invalid job message %r: %s", message, e)
                await queue.ack(delivery)
                continue

            try:
                await self.process(job)
            except CACHE_ERRORS as e:
                # left unacknowledged; redelivered when a worker next starts
                logger.error("Job %s could not be completed: %s", job.job_id, e)
                continue
            await queue.ack(delivery)
