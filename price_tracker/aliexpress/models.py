"""
Boundary models for AliExpress affiliate API payloads.

Upstream responses are loosely shaped: numbers come back as strings, lists are
sometimes wrapped in single-key dicts, and most fields are optional. Everything
"maybe missing" is resolved here, once, so the crawler and the reconciler only
ever see validated values.
"""
import logging
from typing import Any, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


def _to_float(value) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(str(value).replace(",", ""))
    except ValueError:
        return None


def _to_int(value) -> int:
    f = _to_float(value)
    return int(f) if f is not None else 0


def _to_str(value) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _unwrap_list(value) -> list:
    """[..] stays as is; {"string": [..]} / {"dto": [..]} yields the inner list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for inner in value.values():
            if isinstance(inner, list):
                return inner
        return [value] if value else []
    return []


def _dig(raw: dict, *path: str):
    node = raw
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def error_payload(raw) -> Optional[dict]:
    if isinstance(raw, dict) and isinstance(raw.get("error_response"), dict):
        return raw["error_response"]
    return None


# ----------------------------------------------------------------------
# Listing (aliexpress.affiliate.product.query)
# ----------------------------------------------------------------------

class NormalizedItem(BaseModel):
    id: str
    title: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    image: Optional[str] = None
    promotion_link: Optional[str] = None
    c1_id: Optional[str] = None
    c1_name: Optional[str] = None
    c2_id: Optional[str] = None
    c2_name: Optional[str] = None
    volume: int = 0
    reviews: int = 0
    # true when the item came from the store rather than the listing
    tracked: bool = False


class ListingProduct(BaseModel):
    product_id: str
    product_title: Optional[str] = None
    product_detail_url: Optional[str] = None
    product_main_image_url: Optional[str] = None
    target_app_sale_price: Optional[float] = None
    target_app_sale_price_currency: Optional[str] = None
    promotion_link: Optional[str] = None
    lastest_volume: int = 0
    review_count: int = 0
    first_level_category_id: Optional[str] = None
    first_level_category_name: Optional[str] = None
    second_level_category_id: Optional[str] = None
    second_level_category_name: Optional[str] = None

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_id(cls, v):
        s = _to_str(v)
        if s is None:
            raise ValueError("product_id is required")
        return s

    @field_validator("first_level_category_id", "second_level_category_id", mode="before")
    @classmethod
    def _category_id(cls, v):
        return _to_str(v)

    @field_validator("target_app_sale_price", mode="before")
    @classmethod
    def _price(cls, v):
        return _to_float(v)

    @field_validator("lastest_volume", "review_count", mode="before")
    @classmethod
    def _counts(cls, v):
        return _to_int(v)

    def in_category(self, category_id: str) -> bool:
        wanted = str(category_id).strip()
        return wanted in (self.first_level_category_id, self.second_level_category_id)

    def to_item(self) -> NormalizedItem:
        return NormalizedItem(
            id=self.product_id,
            title=self.product_title,
            price=self.target_app_sale_price,
            currency=self.target_app_sale_price_currency,
            image=self.product_main_image_url,
            promotion_link=self.promotion_link,
            c1_id=self.first_level_category_id,
            c1_name=self.first_level_category_name,
            c2_id=self.second_level_category_id,
            c2_name=self.second_level_category_name,
            volume=self.lastest_volume,
            reviews=self.review_count,
        )


class ListingPage(BaseModel):
    products: List[ListingProduct] = []
    total_record_count: Optional[int] = None
    # raw records on the page, including ones that failed validation
    raw_count: int = 0


def parse_listing(raw: dict) -> ListingPage:
    result = (
        _dig(raw, "aliexpress_affiliate_product_query_response", "resp_result", "result")
        or _dig(raw, "resp_result", "result")
        or _dig(raw, "result")
        or {}
    )
    records = _unwrap_list(_dig(result, "products", "product") if isinstance(result, dict) else None)

    products = []
    for record in records:
        try:
            products.append(ListingProduct.model_validate(record))
        except ValidationError as e:
            logger.warning(f"Skipping listing record without a usable product_id: {e.errors()[:1]}")

    total = _to_float(result.get("total_record_count")) if isinstance(result, dict) else None
    return ListingPage(
        products=products,
        total_record_count=int(total) if total is not None else None,
        raw_count=len(records),
    )


# ----------------------------------------------------------------------
# Detail (aliexpress.affiliate.product.sku.detail.get)
# ----------------------------------------------------------------------

class ProductInfo(BaseModel):
    title: str = ""
    store_name: str = ""
    product_score: float = 0
    review_number: int = 0
    image_link: str = ""
    additional_image_links: List[str] = []
    original_link: str = ""
    display_category_id_l1: Optional[str] = None
    display_category_id_l2: Optional[str] = None

    @field_validator("title", "store_name", "image_link", "original_link", mode="before")
    @classmethod
    def _text(cls, v):
        return "" if v is None else str(v)

    @field_validator("product_score", mode="before")
    @classmethod
    def _score(cls, v):
        return _to_float(v) or 0

    @field_validator("review_number", mode="before")
    @classmethod
    def _reviews(cls, v):
        return _to_int(v)

    @field_validator("additional_image_links", mode="before")
    @classmethod
    def _images(cls, v):
        return [str(x) for x in _unwrap_list(v) if x]

    @field_validator("display_category_id_l1", "display_category_id_l2", mode="before")
    @classmethod
    def _category(cls, v):
        return _to_str(v)


class SkuDetail(BaseModel):
    sku_id: str
    color: str = ""
    link: str = ""
    sku_properties: Any = None
    currency: str = "KRW"
    price_with_tax: Optional[float] = None
    sale_price_with_tax: Optional[float] = None

    @field_validator("sku_id", mode="before")
    @classmethod
    def _sku_id(cls, v):
        s = _to_str(v)
        if s is None:
            raise ValueError("sku_id is required")
        return s

    @field_validator("color", "link", mode="before")
    @classmethod
    def _text(cls, v):
        return "" if v is None else str(v)

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, v):
        return _to_str(v) or "KRW"

    @field_validator("price_with_tax", "sale_price_with_tax", mode="before")
    @classmethod
    def _price(cls, v):
        return _to_float(v)


class DetailRecord(BaseModel):
    product_id: str
    info: ProductInfo = Field(default_factory=ProductInfo)
    skus: List[SkuDetail] = []


def _find_detail_result(raw) -> dict:
    """Breadth-first search for the dict holding ae_item_info / ae_item_sku_info."""
    queue = [raw]
    depth = 0
    while queue and depth < 5:
        next_queue = []
        for node in queue:
            if not isinstance(node, dict):
                continue
            if "ae_item_info" in node or "ae_item_sku_info" in node:
                return node
            next_queue.extend(v for v in node.values() if isinstance(v, dict))
        queue = next_queue
        depth += 1
    return {}


def parse_detail(product_id: str, raw: dict) -> DetailRecord:
    result = _find_detail_result(raw)
    info = ProductInfo.model_validate(result.get("ae_item_info") or {})

    sku_info = result.get("ae_item_sku_info") or {}
    skus = []
    for record in _unwrap_list(sku_info.get("traffic_sku_info_list")):
        try:
            skus.append(SkuDetail.model_validate(record))
        except ValidationError as e:
            logger.warning(f"Skipping SKU without sku_id on product {product_id}: {e.errors()[:1]}")

    return DetailRecord(product_id=str(product_id), info=info, skus=skus)
