# src/menu_crawler/models.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class JobKind(str, Enum):
    PAGE = "page"
    SUBPAGE = "subpage"


class ExtractionMethod(str, Enum):
    API = "apiExtractor"
    HTML = "htmlExtractor"
    FILE = "fileExtractor"


class LinkStatus(str, Enum):
    QUEUED = "queued"
    PROCESSED = "processed"
    FAILED = "failed"


@dataclass
class CrawlJob:
    """
    One unit of work on the job queue.
    Wire shape: {"jobId", "url", "kind"}.
    """
    job_id: str
    url: str
    kind: JobKind = JobKind.PAGE

    @classmethod
    def subpage(cls, url: str) -> "CrawlJob":
        return cls(job_id=uuid.uuid4().hex, url=url, kind=JobKind.SUBPAGE)

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "CrawlJob":
        if not message.get("url"):
            raise ValueError("job message has no url")
        # older producers used "type" instead of "kind"
        kind = message.get("kind") or message.get("type") or JobKind.PAGE.value
        return cls(
            job_id=str(message.get("jobId") or uuid.uuid4().hex),
            url=str(message["url"]),
            kind=JobKind(kind),
        )

    def to_message(self) -> Dict[str, Any]:
        return {"jobId": self.job_id, "url": self.url, "kind": self.kind.value}


@dataclass
class ExtractionStrategy:
    """Which method worked last time for a hostname (and its selector, for HTML)."""
    method: ExtractionMethod
    resource: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"method": self.method.value, "resource": self.resource}

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ExtractionStrategy":
        return cls(method=ExtractionMethod(raw["method"]), resource=raw.get("resource"))


@dataclass
class LinkCrawlState:
    status: LinkStatus
    attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status.value, "attempts": self.attempts}

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "LinkCrawlState":
        return cls(status=LinkStatus(raw["status"]), attempts=int(raw.get("attempts") or 0))


@dataclass
class ExtractionResult:
    """
    Terminal output of a job, published to the result queue.
    `data` holds text items (html/api) or saved file paths (file).
    """
    job_id: str
    url: str
    kind: JobKind
    method: Optional[ExtractionMethod] = None
    data: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_message(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "url": self.url,
            "kind": self.kind.value,
            "method": self.method.value if self.method else None,
            "data": list(self.data),
            "error": self.error,
        }


@dataclass
class Extraction:
    """What a successful extractor hands back to the orchestrator."""
    data: List[str]
    resource: Optional[str] = None
