from __future__ import annotations

import pytest

from menu_crawler.models import CrawlJob, ExtractionMethod, ExtractionResult, JobKind


def test_job_from_backend_message_defaults_to_page():
    job = CrawlJob.from_message({"jobId": "42", "url": "https://x.test/"})
    assert job == CrawlJob("42", "https://x.test/", JobKind.PAGE)


def test_job_accepts_legacy_type_field():
    job = CrawlJob.from_message({"url": "https://x.test/a", "type": "subpage"})
    assert job.kind is JobKind.SUBPAGE
    assert job.job_id


@pytest.mark.parametrize("message", [{}, {"jobId": "1", "url": ""}, {"url": "https://x.test/", "kind": "site"}])
def test_invalid_job_messages(message):
    with pytest.raises((KeyError, ValueError)):
        CrawlJob.from_message(message)


def test_subpage_jobs_get_fresh_ids():
    a, b = CrawlJob.subpage("https://x.test/a"), CrawlJob.subpage("https://x.test/a")
    assert a.kind is JobKind.SUBPAGE
    assert a.job_id != b.job_id
    assert a.to_message() == {"jobId": a.job_id, "url": "https://x.test/a", "kind": "subpage"}


def test_failed_result_message():
    result = ExtractionResult("7", "https://x.test/", JobKind.PAGE, error="Navigation failed")
    assert result.failed
    assert result.to_message() == {
        "jobId": "7",
        "url": "https://x.test/",
        "kind": "page",
        "method": None,
        "data": [],
        "error": "Navigation failed",
    }


def test_file_result_message():
    result = ExtractionResult("7", "https://x.test/", JobKind.PAGE, ExtractionMethod.FILE, ["x.test/karte.pdf"])
    assert result.to_message()["method"] == "fileExtractor"
    assert not result.failed
