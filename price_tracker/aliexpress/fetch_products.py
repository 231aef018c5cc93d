import logging
from typing import Any, List, Optional

from pydantic import BaseModel

from price_tracker.aliexpress.client import AliExpressClient
from price_tracker.aliexpress.models import NormalizedItem, error_payload, parse_listing
from price_tracker.config import IngestConfig

logger = logging.getLogger(__name__)

LISTING_METHOD = "aliexpress.affiliate.product.query"

FIELDS = ",".join([
    "product_id",
    "product_title",
    "product_detail_url",
    "product_main_image_url",
    "target_app_sale_price",
    "target_app_sale_price_currency",
    "promotion_link",
    "lastest_volume",
    "review_count",
    "first_level_category_id",
    "first_level_category_name",
    "second_level_category_id",
    "second_level_category_name",
])


class CrawlResult(BaseModel):
    category_id: str
    items: List[NormalizedItem] = []
    server_count: int = 0
    filtered_count: int = 0
    pages: int = 0
    # last raw page, or the error payload when note == "error_response"
    diagnostic: Optional[Any] = None
    note: Optional[str] = None


def listing_params(category_id: str, page_no: int, config: IngestConfig) -> dict:
    return {
        "page_no": page_no,
        "page_size": config.page_size,
        "target_language": config.target_language,
        "target_currency": config.target_currency,
        "ship_to_country": config.ship_to_country,
        "sort": config.sort,
        "fields": FIELDS,
        # the endpoint has honored both spellings at different times
        "category_ids": str(category_id),
        "category_id": str(category_id),
    }


async def crawl_category(client: AliExpressClient, category_id: str, config: IngestConfig) -> CrawlResult:
    """
    Walk every listing page of one category.

    Records are kept when either category level matches; a non-empty page where
    nothing matches is kept whole (taxonomy drift fallback). Crawling stops on
    the upstream total when present, otherwise after the first short page.
    """
    category_id = str(category_id)
    result = CrawlResult(category_id=category_id)
    page_no = 1

    while page_no <= config.max_pages:
        raw = await client.call(LISTING_METHOD, listing_params(category_id, page_no, config))
        result.diagnostic = raw
        result.pages = page_no

        error = error_payload(raw)
        if error is not None:
            logger.warning(
                f"Category {category_id} page {page_no}: error_response "
                f"code={error.get('code')} msg={error.get('msg')}"
            )
            return CrawlResult(
                category_id=category_id,
                pages=page_no,
                diagnostic=raw,
                note="error_response",
            )

        page = parse_listing(raw)
        products = page.products
        matched = [p for p in products if p.in_category(category_id)]

        if matched:
            kept = matched
        elif products and config.category_fallback_unfiltered:
            logger.info(
                f"Category {category_id} page {page_no}: no record matched the category filter, "
                f"keeping all {len(products)} records"
            )
            kept = products
        else:
            kept = []

        result.server_count += len(products)
        result.filtered_count += len(matched)
        result.items.extend(p.to_item() for p in kept)

        if page.raw_count == 0:
            break
        if page.total_record_count is not None:
            if page_no * config.page_size >= page.total_record_count:
                break
        elif page.raw_count < config.page_size:
            break

        page_no += 1
    else:
        logger.warning(f"Category {category_id}: stopped at max_pages={config.max_pages}")

    logger.info(
        f"Category {category_id}: {len(result.items)} items over {result.pages} pages "
        f"(server={result.server_count}, filtered={result.filtered_count})"
    )
    return result
