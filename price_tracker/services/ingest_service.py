import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from functools import partial
from typing import Callable, Iterable, Optional, Sequence

from price_tracker.aliexpress.client import AliExpressClient
from price_tracker.aliexpress.fetch_details import enrich
from price_tracker.aliexpress.fetch_products import crawl_category
from price_tracker.aliexpress.models import NormalizedItem
from price_tracker.config import IngestConfig
from price_tracker.database.products import ProductRepository
from price_tracker.services.product_writer import build_base_fields, build_product_ops
from price_tracker.services.reconciler import VariantRecord, collapse_duplicates, reconcile
from price_tracker.services.task_pool import TaskPool
from price_tracker.utils.dates import day_key, utc_now

logger = logging.getLogger(__name__)


@dataclass
class IngestReport:
    today: str
    categories: int = 0
    crawled_items: int = 0
    candidates: int = 0
    enriched: int = 0
    appended: int = 0
    first_today: int = 0
    lower_today: int = 0
    failed_categories: list = field(default_factory=list)
    failed_product_ids: list = field(default_factory=list)
    diagnostics: list = field(default_factory=list)
    write_errors: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def partition(items: Sequence, count: int) -> list[list]:
    """Split into `count` contiguous slices whose sizes differ by at most one."""
    if count < 1:
        raise ValueError("count must be >= 1")
    base, remainder = divmod(len(items), count)
    parts = []
    start = 0
    for i in range(count):
        end = start + base + (1 if i < remainder else 0)
        parts.append(list(items[start:end]))
        start = end
    return parts


def select_candidates(items: Iterable[NormalizedItem], min_volume: int) -> list[NormalizedItem]:
    """De-duplicate by product id (first occurrence wins) and drop low-volume items."""
    seen = set()
    selected = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        if item.volume >= min_volume:
            selected.append(item)
    return selected


class IngestService:
    def __init__(
        self,
        client: AliExpressClient,
        repository: ProductRepository,
        config: IngestConfig,
        pool: Optional[TaskPool] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.client = client
        self.repository = repository
        self.config = config
        self.pool = pool or TaskPool(config.concurrency)
        self.clock = clock

    async def run(self, category_ids: Optional[list] = None, today: Optional[str] = None) -> IngestReport:
        """
        One ingestion cycle. Explicit `category_ids` are processed as given;
        otherwise the configured (or stored) categories are split into
        partitions and every partition, or only `partition_index`, is run.
        """
        today = today or day_key(self.config.timezone, self.clock())
        report = IngestReport(today=today)

        if category_ids:
            batches = [[str(c) for c in category_ids]]
        else:
            all_ids = list(self.config.category_ids) or await self.repository.list_category_ids()
            batches = partition(all_ids, self.config.partition_count)
            if self.config.partition_index is not None:
                batches = [batches[self.config.partition_index]]

        for number, batch in enumerate(batches, start=1):
            if not batch:
                continue
            logger.info(f"▶ Partition {number}/{len(batches)}: {len(batch)} categories")
            await self._run_batch(batch, today, report)

        logger.info(
            f"✔ Ingest {today} done → {report.enriched} enriched, {report.appended} appended, "
            f"{report.first_today} first-today, {report.lower_today} lower-today, "
            f"{len(report.failed_product_ids)} failed products, {len(report.failed_categories)} failed categories"
        )
        if report.failed_product_ids:
            logger.warning(f"Failed product ids: {report.failed_product_ids}")
        return report

    async def _run_batch(self, category_ids: list[str], today: str, report: IngestReport) -> None:
        report.categories += len(category_ids)

        crawl_results = await self.pool.run(
            [(cid, partial(self._crawl_one, cid, report)) for cid in category_ids]
        )
        report.failed_categories.extend(TaskPool.failures(crawl_results))

        items = [item for batch in TaskPool.values(crawl_results) for item in batch]
        report.crawled_items += len(items)

        candidates = select_candidates(items, self.config.min_volume)
        report.candidates += len(candidates)

        product_results = await self.pool.run(
            [(item.id, partial(self._process_product, item, today, report)) for item in candidates]
        )
        report.failed_product_ids.extend(TaskPool.failures(product_results))

    async def _crawl_one(self, category_id: str, report: IngestReport) -> list[NormalizedItem]:
        category = await self.repository.find_category(category_id)
        tracked = []
        if category is None:
            logger.warning(f"Category {category_id} not found in store; no tracked products to refresh")
        else:
            tracked = await self.repository.tracked_items(category["_id"])

        crawl = await crawl_category(self.client, category_id, self.config)
        if crawl.note:
            report.diagnostics.append(
                {"category_id": category_id, "note": crawl.note, "diagnostic": crawl.diagnostic}
            )

        # fresh listing entries first so they win de-duplication
        return crawl.items + tracked

    async def _process_product(self, item: NormalizedItem, today: str, report: IngestReport) -> dict:
        detail = await enrich(self.client, item.id, self.config)

        category_refs = await self.repository.resolve_categories(
            [detail.info.display_category_id_l1, detail.info.display_category_id_l2]
        )
        exists, stored = await self.repository.load_variants(item.id)

        records = collapse_duplicates(VariantRecord.from_sku(s) for s in detail.skus)
        result = reconcile(stored, records, today)

        ops = build_product_ops(
            item.id,
            build_base_fields(item, detail, category_refs),
            records,
            result,
            today,
            self.clock(),
            exists,
        )
        outcome = await self.repository.bulk_write(item.id, ops)
        report.write_errors.extend(e.to_dict() for e in outcome.errors)

        report.enriched += 1
        report.appended += len(result.to_append)
        report.first_today += len(result.first_today)
        report.lower_today += len(result.lower_today)
        return result.summary()
