# src/menu_crawler/main.py
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import uuid
from typing import List, Optional

from menu_crawler.cache import CrawlCache
from menu_crawler.config import Settings
from menu_crawler.extractors.api import ApiExtractor
from menu_crawler.extractors.files import FileExtractor
from menu_crawler.extractors.html import HtmlExtractor
from menu_crawler.extractors.links import LinkExtractor
from menu_crawler.fetchers.browser import BrowserSession
from menu_crawler.fetchers.http import HttpFetcher
from menu_crawler.logging import setup_logger
from menu_crawler.models import CrawlJob, JobKind
from menu_crawler.orchestrator import ExtractionOrchestrator
from menu_crawler.queues import QueueSet

logger = logging.getLogger(__name__)


def build_orchestrator(
    settings: Settings,
    session: BrowserSession,
    fetcher: HttpFetcher,
    cache: CrawlCache,
    queues: QueueSet,
) -> ExtractionOrchestrator:
    # order matters: first extractor with data wins
    extractors = [
        ApiExtractor(),
        HtmlExtractor(),
        FileExtractor(
            fetcher,
            upload_root=settings.upload_root,
            render_timeout_seconds=settings.render_timeout_seconds,
            min_file_size=settings.min_file_size_bytes,
        ),
    ]
    return ExtractionOrchestrator(
        session,
        cache,
        extractors,
        LinkExtractor(),
        subpage_queue=queues.get(settings.subpage_queue),
        result_queue=queues.get(settings.result_queue),
        max_link_attempts=settings.max_link_attempts,
    )


async def run(settings: Settings) -> None:
    queues = QueueSet(settings.queue_dir, poll_interval=settings.queue_poll_interval_seconds)
    cache = CrawlCache(
        settings.cache_dir,
        strategy_ttl_seconds=settings.strategy_ttl_seconds,
        link_ttl_seconds=settings.link_ttl_seconds,
    )
    session = BrowserSession(
        headless=settings.headless,
        navigation_timeout_seconds=settings.navigation_timeout_seconds,
        render_timeout_seconds=settings.render_timeout_seconds,
    )
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    try:
        async with HttpFetcher(timeout_seconds=settings.download_timeout_seconds) as fetcher:
            orchestrator = build_orchestrator(settings, session, fetcher, cache, queues)
            job_queue = queues.get(settings.job_queue)
            # jobs left in flight by a previous worker that died
            job_queue.recover()
            workers = [
                asyncio.create_task(orchestrator.consume(job_queue), name=f"worker-{i}")
                for i in range(settings.max_concurrency)
            ]
            logger.info("Menu crawler listening on queue %s with %d workers", settings.job_queue, len(workers))

            await stop.wait()
            logger.info("Shutting down")
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
    finally:
        await session.shutdown()
        cache.close()
        queues.close()


async def enqueue(settings: Settings, url: str, job_id: Optional[str]) -> CrawlJob:
    queues = QueueSet(settings.queue_dir)
    try:
        job = CrawlJob(job_id=job_id or uuid.uuid4().hex, url=url, kind=JobKind.PAGE)
        await queues.get(settings.job_queue).publish(job.to_message())
        return job
    finally:
        queues.close()


def dump_results(settings: Settings, ack: bool) -> int:
    queues = QueueSet(settings.queue_dir)
    count = 0
    try:
        queue = queues.get(settings.result_queue)
        if not ack:
            for message in queue.pending():
                print(json.dumps(message, ensure_ascii=False))
            return 0
        while True:
            delivery = queue.get_nowait()
            if delivery is None:
                break
            print(json.dumps(delivery.message, ensure_ascii=False))
            queue.ack_nowait(delivery)
            count += 1
    finally:
        queues.close()
    return count


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="menu-crawler", description="Restaurant menu crawler worker")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="consume crawl jobs until interrupted")

    p_enqueue = sub.add_parser("enqueue", help="queue a restaurant page for crawling")
    p_enqueue.add_argument("url")
    p_enqueue.add_argument("--job-id", default=None)

    p_results = sub.add_parser("results", help="print published results as JSON lines")
    p_results.add_argument("--ack", action="store_true", help="consume the results while printing")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    settings = Settings()
    setup_logger(settings.log_level)

    if args.command == "run":
        asyncio.run(run(settings))
    elif args.command == "enqueue":
        job = asyncio.run(enqueue(settings, args.url, args.job_id))
        print("Queued", job.job_id, job.url)
    elif args.command == "results":
        dump_results(settings, args.ack)


if __name__ == "__main__":
    main()
