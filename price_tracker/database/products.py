import logging
from dataclasses import dataclass, field

from pymongo import UpdateOne
from pymongo.errors import BulkWriteError, PyMongoError

from price_tracker.aliexpress.models import NormalizedItem
from price_tracker.database.mongo import CATEGORIES_COLLECTION, PRODUCTS_COLLECTION
from price_tracker.errors import PersistenceError

logger = logging.getLogger(__name__)

VARIANT_PROJECTION = {
    "variants.sku_id": 1,
    "variants.color": 1,
    "variants.properties": 1,
    "variants.prices": 1,
}


@dataclass
class WriteOutcome:
    product_id: str
    submitted: int = 0
    matched: int = 0
    modified: int = 0
    upserted: int = 0
    errors: list[PersistenceError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class ProductRepository:
    """
    Store access for one ingestion run. Everything the pipeline reads or
    writes goes through here, so the services never build queries themselves.
    """

    def __init__(self, db):
        self.products = db[PRODUCTS_COLLECTION]
        self.categories = db[CATEGORIES_COLLECTION]

    async def list_category_ids(self) -> list[str]:
        docs = await self.categories.find({}, {"c_id": 1}).to_list(None)
        return [str(d["c_id"]) for d in docs if d.get("c_id") is not None]

    async def find_category(self, category_id: str) -> dict | None:
        return await self.categories.find_one({"c_id": str(category_id)})

    async def resolve_categories(self, category_ids) -> dict:
        """upstream category id -> store _id, for the ids that exist."""
        wanted = sorted({str(c) for c in category_ids if c})
        if not wanted:
            return {}
        docs = await self.categories.find({"c_id": {"$in": wanted}}, {"c_id": 1}).to_list(None)
        return {str(d["c_id"]): d["_id"] for d in docs}

    async def tracked_items(self, category_ref) -> list[NormalizedItem]:
        """Products already stored under a category, shaped like listing items."""
        cursor = self.products.find(
            {"$or": [{"category_1": category_ref}, {"category_2": category_ref}]},
            {"volume": 1, "promotion_link": 1, "title": 1},
        )
        items = []
        async for doc in cursor:
            items.append(
                NormalizedItem(
                    id=str(doc["_id"]),
                    title=doc.get("title"),
                    promotion_link=doc.get("promotion_link"),
                    volume=int(doc.get("volume") or 0),
                    tracked=True,
                )
            )
        return items

    async def load_variants(self, product_id: str) -> tuple[bool, list[dict]]:
        """(document exists, stored variants) from a single read."""
        doc = await self.products.find_one({"_id": str(product_id)}, VARIANT_PROJECTION)
        if doc is None:
            return False, []
        return True, list(doc.get("variants") or [])

    async def bulk_write(self, product_id: str, ops: list[UpdateOne]) -> WriteOutcome:
        """
        Unordered batch. Per-operation failures are collected, not raised, so
        one bad op never blocks its siblings. Driver-level failures raise.
        """
        outcome = WriteOutcome(product_id=str(product_id), submitted=len(ops))
        if not ops:
            return outcome

        try:
            result = await self.products.bulk_write(ops, ordered=False)
        except BulkWriteError as e:
            details = e.details or {}
            outcome.matched = details.get("nMatched", 0)
            outcome.modified = details.get("nModified", 0)
            outcome.upserted = details.get("nUpserted", 0)
            for err in details.get("writeErrors", []):
                outcome.errors.append(
                    PersistenceError(
                        str(product_id),
                        err.get("errmsg", "write error"),
                        index=err.get("index"),
                        code=err.get("code"),
                    )
                )
            logger.error(f"Product {product_id}: {len(outcome.errors)} of {len(ops)} write(s) failed")
            return outcome
        except PyMongoError as e:
            raise PersistenceError(str(product_id), str(e)) from e

        outcome.matched = result.matched_count
        outcome.modified = result.modified_count
        outcome.upserted = result.upserted_count
        return outcome
