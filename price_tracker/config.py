from dataclasses import dataclass, field

from pydantic import model_validator
from pydantic_settings import BaseSettings

from price_tracker.utils.retry import RetryPolicy


@dataclass(frozen=True)
class IngestConfig:
    """Everything one ingestion run needs, passed explicitly to each component."""
    concurrency: int = 10
    page_size: int = 50
    max_pages: int = 100
    min_volume: int = 50
    partition_count: int = 8
    partition_index: int | None = None
    category_ids: list[str] = field(default_factory=list)
    category_fallback_unfiltered: bool = True
    target_currency: str = "KRW"
    target_language: str = "ko"
    ship_to_country: str = "KR"
    sort: str = "LAST_VOLUME_DESC"
    timezone: str = "Asia/Seoul"
    fetch_policy: RetryPolicy = field(default_factory=RetryPolicy)
    detail_policy: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(max_retries=3, base_delay=0.8, jitter=0.3)
    )

    def __post_init__(self):
        if self.partition_count < 1:
            raise ValueError(f"partition_count must be >= 1, got {self.partition_count}")
        if self.partition_index is not None and not 0 <= self.partition_index < self.partition_count:
            raise ValueError(
                f"partition_index={self.partition_index} is outside partition_count={self.partition_count}"
            )


class Settings(BaseSettings):
    MONGO_URI: str
    MONGO_DB: str

    AE_APP_KEY: str
    AE_APP_SECRET: str
    AE_TRACKING_ID: str
    AE_API_URL: str = "https://api-sg.aliexpress.com/sync"

    CONCURRENCY: int = 10
    PAGE_SIZE: int = 50
    MAX_PAGES: int = 100
    MIN_VOLUME: int = 50

    # categories are split into PARTITION_COUNT balanced slices; None runs them all
    PARTITION_COUNT: int = 8
    PARTITION_INDEX: int | None = None
    CATEGORY_IDS: list[str] = []
    CATEGORY_FALLBACK_UNFILTERED: bool = True

    TARGET_CURRENCY: str = "KRW"
    TARGET_LANGUAGE: str = "ko"
    SHIP_TO_COUNTRY: str = "KR"
    SORT: str = "LAST_VOLUME_DESC"
    INGEST_TIMEZONE: str = "Asia/Seoul"

    FETCH_MAX_RETRIES: int = 4
    FETCH_BASE_DELAY: float = 0.6
    FETCH_BACKOFF_FACTOR: float = 2.0
    FETCH_JITTER: float = 0.35
    FETCH_MAX_DELAY: float = 10.0
    FETCH_TIMEOUT: float = 18.0

    DETAIL_MAX_RETRIES: int = 3
    DETAIL_BASE_DELAY: float = 0.8
    DETAIL_BACKOFF_FACTOR: float = 2.0
    DETAIL_JITTER: float = 0.3
    DETAIL_MAX_DELAY: float = 10.0

    SYNC_INTERVAL_MINUTES: int = 30
    SCHEDULER_ENABLED: bool = False

    class Config:
        env_file = ".env"

    @model_validator(mode="after")
    def _check_partition(self):
        if self.PARTITION_COUNT < 1:
            raise ValueError(f"PARTITION_COUNT must be >= 1, got {self.PARTITION_COUNT}")
        index = self.PARTITION_INDEX
        if index is not None and not 0 <= index < self.PARTITION_COUNT:
            raise ValueError(
                f"PARTITION_INDEX must be in [0, PARTITION_COUNT); "
                f"got PARTITION_INDEX={index}, PARTITION_COUNT={self.PARTITION_COUNT}"
            )
        return self

    def fetch_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.FETCH_MAX_RETRIES,
            base_delay=self.FETCH_BASE_DELAY,
            backoff_factor=self.FETCH_BACKOFF_FACTOR,
            jitter=self.FETCH_JITTER,
            max_delay=self.FETCH_MAX_DELAY,
            request_timeout=self.FETCH_TIMEOUT,
        )

    def detail_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.DETAIL_MAX_RETRIES,
            base_delay=self.DETAIL_BASE_DELAY,
            backoff_factor=self.DETAIL_BACKOFF_FACTOR,
            jitter=self.DETAIL_JITTER,
            max_delay=self.DETAIL_MAX_DELAY,
            request_timeout=self.FETCH_TIMEOUT,
        )

    def ingest_config(self) -> IngestConfig:
        return IngestConfig(
            concurrency=self.CONCURRENCY,
            page_size=self.PAGE_SIZE,
            max_pages=self.MAX_PAGES,
            min_volume=self.MIN_VOLUME,
            partition_count=self.PARTITION_COUNT,
            partition_index=self.PARTITION_INDEX,
            category_ids=list(self.CATEGORY_IDS),
            category_fallback_unfiltered=self.CATEGORY_FALLBACK_UNFILTERED,
            target_currency=self.TARGET_CURRENCY,
            target_language=self.TARGET_LANGUAGE,
            ship_to_country=self.SHIP_TO_COUNTRY,
            sort=self.SORT,
            timezone=self.INGEST_TIMEZONE,
            fetch_policy=self.fetch_policy(),
            detail_policy=self.detail_policy(),
        )


def load_settings() -> Settings:
    return Settings()
