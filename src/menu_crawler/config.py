# src/menu_crawler/config.py
from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Browser
    headless: bool = True
    navigation_timeout_seconds: int = 30
    render_timeout_seconds: int = 10
    max_concurrency: int = 4

    # File storage
    upload_root: str = "uploads"
    min_file_size_bytes: int = 30 * 1024
    download_timeout_seconds: int = 25

    # Cache
    cache_dir: str = ".cache/menu-crawler"
    strategy_ttl_seconds: int = 2592000  # 30 days
    link_ttl_seconds: int = 2592000

    # Queues
    queue_dir: str = ".queues"
    job_queue: str = "scraper.page.queue"
    subpage_queue: str = "scraper.page.queue"  # subpages loop back into the job queue
    result_queue: str = "backend.page.queue"
    queue_poll_interval_seconds: float = 0.5

    # Crawl
    max_link_attempts: int = 3

    # App
    log_level: str = "INFO"

    model_config = {
        "env_prefix": "MENU_CRAWLER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }
