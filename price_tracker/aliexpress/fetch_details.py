import logging

from price_tracker.aliexpress.client import AliExpressClient
from price_tracker.aliexpress.models import DetailRecord, error_payload, parse_detail
from price_tracker.config import IngestConfig
from price_tracker.errors import EnrichError, UpstreamErrorPayload
from price_tracker.utils.retry import with_retry

logger = logging.getLogger(__name__)

DETAIL_METHOD = "aliexpress.affiliate.product.sku.detail.get"


async def get_sku_detail(client: AliExpressClient, product_id: str, config: IngestConfig) -> DetailRecord:
    params = {
        "product_id": str(product_id),
        "target_currency": config.target_currency,
        "target_language": config.target_language,
        "ship_to_country": config.ship_to_country,
    }
    raw = await client.call(DETAIL_METHOD, params)

    error = error_payload(raw)
    if error is not None:
        raise UpstreamErrorPayload(
            code=error.get("code"),
            sub_code=error.get("sub_code"),
            message=error.get("msg", ""),
            payload=raw,
        )
    return parse_detail(product_id, raw)


async def enrich(client: AliExpressClient, product_id: str, config: IngestConfig) -> DetailRecord:
    """Detail call for one product under the detail retry policy; EnrichError once retries run out."""
    attempts = 0

    async def attempt():
        nonlocal attempts
        attempts += 1
        return await get_sku_detail(client, product_id, config)

    try:
        return await with_retry(
            attempt,
            config.detail_policy,
            sleep=client.sleep,
            label=f"detail {product_id}",
        )
    except Exception as e:
        logger.warning(
            f"getSkuDetail failed for product {product_id} after {attempts} attempt(s): "
            f"code={getattr(e, 'code', None)} sub_code={getattr(e, 'sub_code', None)} {e}"
        )
        raise EnrichError(str(product_id), attempts=attempts, cause=e) from e
