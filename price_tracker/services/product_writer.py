import logging
from datetime import datetime
from typing import Iterable

from pymongo import UpdateOne

from price_tracker.aliexpress.models import DetailRecord, NormalizedItem
from price_tracker.services.reconciler import ReconcileResult, VariantRecord, VariantUpdate

logger = logging.getLogger(__name__)

VARIANTS = "variants"

# ----------------------------------------------------------------------
# Base document
# ----------------------------------------------------------------------

def build_base_fields(item: NormalizedItem, detail: DetailRecord, category_refs: dict) -> dict:
    """
    Fields replaced on every pass. `category_refs` maps upstream category id to
    the store `_id`; unresolved references are left out rather than nulled.
    """
    info = detail.info
    fields = {
        "volume": item.volume,
        "original_link": info.original_link,
        "promotion_link": item.promotion_link or "",
        "category_1": category_refs.get(info.display_category_id_l1),
        "category_2": category_refs.get(info.display_category_id_l2),
        "title": info.title,
        "store_name": info.store_name,
        "score": info.product_score,
        "review_count": info.review_number,
        "image_link": info.image_link,
        "additional_image_links": info.additional_image_links,
    }
    return {k: v for k, v in fields.items() if v is not None}


# ----------------------------------------------------------------------
# Bulk operations
# ----------------------------------------------------------------------

def _variant_set(record: VariantRecord, today: str, observed_at: datetime) -> dict:
    prefix = f"{VARIANTS}.$[e]"
    return {
        f"{prefix}.sku_id": record.sku_id,
        f"{prefix}.color": record.color,
        f"{prefix}.link": record.link,
        f"{prefix}.properties": record.properties,
        f"{prefix}.currency": record.currency,
        f"{prefix}.prices.{today}": record.price_point(observed_at),
    }


def _identity_filter(update: VariantUpdate) -> dict:
    return {
        "e.sku_id": update.stored["sku_id"],
        "e.color": update.stored["color"],
        "e.properties": update.stored["properties"],
    }


def first_today_op(product_id: str, update: VariantUpdate, today: str, observed_at: datetime) -> UpdateOne:
    array_filter = _identity_filter(update)
    array_filter[f"e.prices.{today}"] = {"$exists": False}
    return UpdateOne(
        {"_id": product_id},
        {"$set": _variant_set(update.record, today, observed_at)},
        array_filters=[array_filter],
    )


def lower_today_op(product_id: str, update: VariantUpdate, today: str, observed_at: datetime) -> UpdateOne:
    # the whole point is replaced, and only if the stored price is still higher
    array_filter = _identity_filter(update)
    array_filter[f"e.prices.{today}.sale_price"] = {"$gt": update.record.sale_price}
    return UpdateOne(
        {"_id": product_id},
        {"$set": _variant_set(update.record, today, observed_at)},
        array_filters=[array_filter],
    )


def build_product_ops(
    product_id: str,
    base_fields: dict,
    variants: Iterable[VariantRecord],
    result: ReconcileResult,
    today: str,
    observed_at: datetime,
    exists: bool,
) -> list[UpdateOne]:
    """
    Unordered batch for one product:
      1. upsert base fields; the full variant list only on insert
      2. one targeted update per first-of-day / lower-than-today variant
      3. one $push for every new variant, when the document already existed
    """
    product_id = str(product_id)
    ops = [
        UpdateOne(
            {"_id": product_id},
            {
                "$set": base_fields,
                "$setOnInsert": {
                    VARIANTS: [v.to_document(today, observed_at) for v in variants],
                },
            },
            upsert=True,
        )
    ]

    for update in result.first_today:
        ops.append(first_today_op(product_id, update, today, observed_at))

    for update in result.lower_today:
        logger.info(
            f"Product {product_id} sku {update.record.sku_id}: new intraday low {update.record.sale_price}"
        )
        ops.append(lower_today_op(product_id, update, today, observed_at))

    if result.to_append and exists:
        ops.append(
            UpdateOne(
                {"_id": product_id},
                {"$push": {VARIANTS: {"$each": [v.to_document(today, observed_at) for v in result.to_append]}}},
            )
        )

    return ops
