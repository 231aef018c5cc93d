"""
Pytest fixtures shared by the ingestion tests.
"""
import pytest

from price_tracker.config import IngestConfig
from price_tracker.utils.retry import RetryPolicy

from fakes import SleepRecorder


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def no_jitter_policy():
    return RetryPolicy(max_retries=2, base_delay=0.5, backoff_factor=2, jitter=0, max_delay=5, request_timeout=1)


@pytest.fixture
def ingest_config():
    return IngestConfig(
        concurrency=3,
        page_size=2,
        max_pages=10,
        min_volume=50,
        partition_count=1,
        fetch_policy=RetryPolicy(max_retries=1, base_delay=0, jitter=0),
        detail_policy=RetryPolicy(max_retries=1, base_delay=0, jitter=0),
    )
