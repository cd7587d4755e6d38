"""Orchestrator behaviour against a real on-disk cache and queues, with the browser and extractors faked."""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeExtractor, FakeLinkExtractor, make_session
from menu_crawler.errors import NavigationError
from menu_crawler.models import (
    CrawlJob,
    Extraction,
    ExtractionMethod,
    ExtractionStrategy,
    JobKind,
    LinkCrawlState,
    LinkStatus,
)
from menu_crawler.orchestrator import ExtractionOrchestrator

URL = "https://x.test/speisekarte"
ITEMS = ["Mineralwasser 2,50", "Cola 3,00"]


def build(cache, queues, *, api=None, html=None, file=None, links=None, session=None):
    api = api or FakeExtractor(ExtractionMethod.API)
    html = html or FakeExtractor(ExtractionMethod.HTML)
    file = file or FakeExtractor(ExtractionMethod.FILE)
    orchestrator = ExtractionOrchestrator(
        session or make_session(),
        cache,
        [api, html, file],
        links or FakeLinkExtractor(),
        subpage_queue=queues.get("jobs"),
        result_queue=queues.get("results"),
    )
    return orchestrator, api, html, file


class TestPipeline:
    @pytest.mark.asyncio
    async def test_html_result_is_published_and_strategy_cached(self, cache, queues) -> None:
        html = FakeExtractor(ExtractionMethod.HTML, [Extraction(ITEMS, resource="ul.menu-list > li")])
        orchestrator, api, _, file = build(cache, queues, html=html)

        result = await orchestrator.process(CrawlJob("job-1", URL, JobKind.PAGE))

        assert result.method is ExtractionMethod.HTML
        assert result.data == ITEMS
        assert api.calls == [None]
        assert file.calls == []
        assert await cache.get_strategy("x.test") == ExtractionStrategy(ExtractionMethod.HTML, "ul.menu-list > li")
        assert queues.get("results").pending() == [{
            "jobId": "job-1",
            "url": URL,
            "kind": "page",
            "method": "htmlExtractor",
            "data": ITEMS,
            "error": None,
        }]

    @pytest.mark.asyncio
    async def test_file_strategy_is_cached_without_resource(self, cache, queues) -> None:
        file = FakeExtractor(ExtractionMethod.FILE, [Extraction(["x.test/karte.pdf"], resource="ignored")])
        orchestrator, _, html, _ = build(cache, queues, file=file)

        result = await orchestrator.process(CrawlJob("job-1", URL))

        assert result.method is ExtractionMethod.FILE
        assert html.calls == [None]
        assert await cache.get_strategy("x.test") == ExtractionStrategy(ExtractionMethod.FILE, None)

    @pytest.mark.asyncio
    async def test_nothing_found_completes_with_empty_result(self, cache, queues) -> None:
        orchestrator, api, html, file = build(cache, queues)

        result = await orchestrator.process(CrawlJob("job-1", URL))

        assert result.method is None
        assert result.data == []
        assert result.error is None
        assert (api.calls, html.calls, file.calls) == ([None], [None], [None])
        assert await cache.get_strategy("x.test") is None
        assert (await cache.get_link_state(URL)).status is LinkStatus.PROCESSED

    @pytest.mark.asyncio
    async def test_empty_extraction_counts_as_nothing(self, cache, queues) -> None:
        html = FakeExtractor(ExtractionMethod.HTML, [Extraction([], resource="ul > li")])
        file = FakeExtractor(ExtractionMethod.FILE, [Extraction(["x.test/karte.pdf"])])
        orchestrator, _, _, _ = build(cache, queues, html=html, file=file)

        result = await orchestrator.process(CrawlJob("job-1", URL))
        assert result.method is ExtractionMethod.FILE


class TestStrategyCache:
    @pytest.mark.asyncio
    async def test_second_job_on_same_host_reuses_selector(self, cache, queues) -> None:
        html = FakeExtractor(ExtractionMethod.HTML, [
            Extraction(ITEMS, resource="ul.menu-list > li"),
            Extraction(["Kaffee 2,80"], resource="ul.menu-list > li"),
        ])
        orchestrator, api, _, file = build(cache, queues, html=html)

        await orchestrator.process(CrawlJob("job-1", URL))
        second = await orchestrator.process(CrawlJob("job-2", "https://x.test/getraenke", JobKind.SUBPAGE))

        assert html.calls == [None, "ul.menu-list > li"]
        assert api.calls == [None]
        assert file.calls == []
        assert second.data == ["Kaffee 2,80"]
        assert second.method is ExtractionMethod.HTML

    @pytest.mark.asyncio
    async def test_cached_strategy_without_data_does_not_fall_back(self, cache, queues) -> None:
        await cache.set_strategy("x.test", ExtractionStrategy(ExtractionMethod.HTML, "div.gone > li"))
        orchestrator, api, html, file = build(cache, queues)

        result = await orchestrator.process(CrawlJob("job-1", URL))

        assert result.method is None
        assert result.data == []
        assert result.error is None
        assert html.calls == ["div.gone > li"]
        assert api.calls == [] and file.calls == []

    @pytest.mark.asyncio
    async def test_other_hosts_are_unaffected(self, cache, queues) -> None:
        await cache.set_strategy("x.test", ExtractionStrategy(ExtractionMethod.FILE))
        html = FakeExtractor(ExtractionMethod.HTML, [Extraction(ITEMS, resource="li")])
        orchestrator, _, _, file = build(cache, queues, html=html)

        result = await orchestrator.process(CrawlJob("job-1", "https://y.test/"))

        assert result.method is ExtractionMethod.HTML
        assert file.calls == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_navigation_failure_publishes_error(self, cache, queues) -> None:
        session = make_session(NavigationError(URL, "net::ERR_CONNECTION_REFUSED"))
        links = FakeLinkExtractor({URL: ["https://x.test/a"]})
        orchestrator, api, _, _ = build(cache, queues, session=session, links=links)

        result = await orchestrator.process(CrawlJob("job-1", URL))

        assert result.failed
        assert "ERR_CONNECTION_REFUSED" in result.error
        assert api.calls == []
        assert links.calls == []
        assert (await cache.get_link_state(URL)).status is LinkStatus.FAILED
        session.close_page.assert_awaited_once()
        [message] = queues.get("results").pending()
        assert message["error"] == result.error
        assert message["method"] is None

    @pytest.mark.asyncio
    async def test_extractor_exception_fails_the_job(self, cache, queues) -> None:
        class Broken(FakeExtractor):
            async def try_extract(self, page, resource=None):
                raise RuntimeError("evaluation failed")

        orchestrator, _, _, _ = build(cache, queues, html=Broken(ExtractionMethod.HTML))
        result = await orchestrator.process(CrawlJob("job-1", URL))

        assert result.error == "evaluation failed"

    @pytest.mark.asyncio
    async def test_failure_keeps_attempt_count(self, cache, queues) -> None:
        await cache.set_link_state(URL, LinkCrawlState(LinkStatus.QUEUED, attempts=2))
        orchestrator, _, _, _ = build(cache, queues, session=make_session(NavigationError(URL, "timeout")))

        await orchestrator.process(CrawlJob("job-1", URL, JobKind.SUBPAGE))

        assert await cache.get_link_state(URL) == LinkCrawlState(LinkStatus.FAILED, attempts=2)


class TestLinkHandling:
    @pytest.mark.asyncio
    async def test_new_links_are_queued_as_subpages(self, cache, queues) -> None:
        links = FakeLinkExtractor({URL: ["https://x.test/a", "https://x.test/b"]})
        orchestrator, _, _, _ = build(cache, queues, links=links)

        await orchestrator.process(CrawlJob("job-1", URL))

        jobs = queues.get("jobs").pending()
        assert sorted(j["url"] for j in jobs) == ["https://x.test/a", "https://x.test/b"]
        assert all(j["kind"] == "subpage" and j["jobId"] for j in jobs)
        assert await cache.get_link_state("https://x.test/a") == LinkCrawlState(LinkStatus.QUEUED, attempts=1)

    @pytest.mark.asyncio
    async def test_queued_and_processed_links_are_skipped(self, cache, queues) -> None:
        await cache.set_link_state("https://x.test/a", LinkCrawlState(LinkStatus.QUEUED, 1))
        await cache.set_link_state("https://x.test/b", LinkCrawlState(LinkStatus.PROCESSED, 1))
        links = FakeLinkExtractor({URL: ["https://x.test/a", "https://x.test/b"]})
        orchestrator, _, _, _ = build(cache, queues, links=links)

        await orchestrator.process(CrawlJob("job-1", URL))

        assert queues.get("jobs").pending() == []

    @pytest.mark.asyncio
    async def test_links_are_handled_even_when_nothing_was_extracted(self, cache, queues) -> None:
        links = FakeLinkExtractor({URL: ["https://x.test/a"]})
        orchestrator, _, _, _ = build(cache, queues, links=links)

        await orchestrator.process(CrawlJob("job-1", URL))
        assert links.calls == [URL]

    @pytest.mark.asyncio
    async def test_failing_link_is_retried_three_times_then_dropped(self, cache, queues) -> None:
        link = "https://x.test/kaputt"
        links = FakeLinkExtractor({URL: [link]})
        ok = build(cache, queues, links=links)[0]
        broken = build(cache, queues, session=make_session(NavigationError(link, "boom")))[0]

        enqueued_attempts = []
        for _ in range(4):
            before = len(queues.get("jobs").pending())
            await ok.process(CrawlJob("root", URL))
            if len(queues.get("jobs").pending()) > before:
                enqueued_attempts.append((await cache.get_link_state(link)).attempts)
                await broken.process(CrawlJob("sub", link, JobKind.SUBPAGE))

        assert enqueued_attempts == [1, 2, 3]
        assert await cache.get_link_state(link) == LinkCrawlState(LinkStatus.FAILED, attempts=3)

    @pytest.mark.parametrize(
        "state,expected",
        [
            (None, 1),
            (LinkCrawlState(LinkStatus.QUEUED, 1), None),
            (LinkCrawlState(LinkStatus.PROCESSED, 2), None),
            (LinkCrawlState(LinkStatus.FAILED, 1), 2),
            (LinkCrawlState(LinkStatus.FAILED, 2), 3),
            (LinkCrawlState(LinkStatus.FAILED, 3), None),
            (LinkCrawlState(LinkStatus.FAILED, 7), None),
        ],
    )
    def test_next_attempt(self, cache, queues, state, expected) -> None:
        orchestrator = build(cache, queues)[0]
        assert orchestrator.next_attempt(state) == expected


class TestConsume:
    @pytest.mark.asyncio
    async def test_consume_processes_and_acks(self, cache, queues) -> None:
        html = FakeExtractor(ExtractionMethod.HTML, [Extraction(ITEMS, resource="li")])
        orchestrator, _, _, _ = build(cache, queues, html=html)
        inbound = queues.get("inbound")
        await inbound.publish({"url": URL})
        await inbound.publish({"jobId": "j-2", "type": "page"})  # no url: dropped
        await inbound.publish({"jobId": "j-3", "url": URL, "kind": "subpage"})

        worker = asyncio.create_task(orchestrator.consume(inbound))
        try:
            for _ in range(200):
                if len(queues.get("results").pending()) == 2 and len(inbound) == 0 and inbound.unacked() == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)

        results = queues.get("results").pending()
        assert [r["kind"] for r in results] == ["page", "subpage"]
        assert results[1]["jobId"] == "j-3"
        assert len(inbound) == 0
        assert inbound.unacked() == 0
