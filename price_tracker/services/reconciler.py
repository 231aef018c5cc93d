"""
Variant reconciliation.

A variant is identified by (sku_id, color, properties), where color and the
property bag are canonicalized so that whitespace noise and key ordering from
the upstream API never produce a "new" variant. For every incoming variant we
decide whether it must be appended, get its first price point for the day, get
a lower intraday price point, or be left alone.

Stored price points hold the lowest sale price seen during the day; a later,
strictly lower observation replaces the whole point.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Tuple

from price_tracker.aliexpress.models import SkuDetail

logger = logging.getLogger(__name__)

# regular whitespace plus zero-width space/joiners and BOM
_WS_RE = re.compile(r"[\s\u200b-\u200d\ufeff]")

VariantKey = Tuple[str, str, str]


def norm(value) -> str:
    if value is None:
        return ""
    return _WS_RE.sub("", str(value))


def parse_sku_props(value) -> list:
    if not value:
        return []
    if isinstance(value, dict):
        return [value]
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return []
        return parse_sku_props(parsed) if isinstance(parsed, (list, dict)) else []
    return []


def _is_empty_props(props: list) -> bool:
    return not props or all(not isinstance(p, dict) or not p for p in props)


def canon_sku_props(value) -> str:
    """
    Canonical string for a property bag: keys and values stripped of all
    whitespace, each object's entries sorted by key, compact JSON.
    Empty or absent bags give "". Applying it to its own output is a no-op.
    """
    props = parse_sku_props(value)
    if _is_empty_props(props):
        return ""
    canon = []
    for obj in props:
        if not isinstance(obj, dict):
            continue
        entries = sorted((norm(k), norm(v)) for k, v in obj.items())
        canon.append(dict(entries))
    return json.dumps(canon, ensure_ascii=False, separators=(",", ":"))


def variant_key(sku_id, color, properties) -> VariantKey:
    return (str(sku_id), norm(color), canon_sku_props(properties))


def _to_number(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class VariantRecord:
    """An incoming variant, already canonical."""
    sku_id: str
    color: str
    properties: str
    link: str = ""
    currency: str = "KRW"
    price: Optional[float] = None
    sale_price: Optional[float] = None

    @classmethod
    def from_sku(cls, sku: SkuDetail) -> "VariantRecord":
        sale = sku.sale_price_with_tax
        return cls(
            sku_id=str(sku.sku_id),
            color=norm(sku.color),
            properties=canon_sku_props(sku.sku_properties),
            link=sku.link or "",
            currency=sku.currency or "KRW",
            price=sku.price_with_tax,
            sale_price=sale if sale is not None else sku.price_with_tax,
        )

    @property
    def key(self) -> VariantKey:
        return (self.sku_id, self.color, self.properties)

    def price_point(self, observed_at: datetime) -> dict:
        return {"price": self.price, "sale_price": self.sale_price, "observed_at": observed_at}

    def to_document(self, today: str, observed_at: datetime) -> dict:
        return {
            "sku_id": self.sku_id,
            "color": self.color,
            "link": self.link,
            "properties": self.properties,
            "currency": self.currency,
            "prices": {today: self.price_point(observed_at)},
        }


@dataclass(frozen=True)
class VariantUpdate:
    """
    An incoming record matched to a stored variant. `stored` holds the stored
    element's identity fields exactly as persisted, which is what an array
    filter has to match on.
    """
    record: VariantRecord
    stored: dict

    @property
    def key(self) -> VariantKey:
        return self.record.key


@dataclass
class ReconcileResult:
    to_append: list[VariantRecord] = field(default_factory=list)
    first_today: list[VariantUpdate] = field(default_factory=list)
    lower_today: list[VariantUpdate] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_append or self.first_today or self.lower_today)

    def summary(self) -> dict:
        return {
            "appended": len(self.to_append),
            "first_today": len(self.first_today),
            "lower_today": len(self.lower_today),
        }


def collapse_duplicates(incoming: Iterable[VariantRecord]) -> list[VariantRecord]:
    """One record per identity key, keeping the lowest sale price; first-seen order."""
    by_key: dict[VariantKey, VariantRecord] = {}
    for record in incoming:
        current = by_key.get(record.key)
        if current is None:
            by_key[record.key] = record
            continue
        new_sale, cur_sale = record.sale_price, current.sale_price
        if new_sale is not None and (cur_sale is None or new_sale < cur_sale):
            by_key[record.key] = record
    return list(by_key.values())


def _stored_identity(variant: dict) -> dict:
    return {
        "sku_id": variant.get("sku_id"),
        "color": variant.get("color"),
        "properties": variant.get("properties"),
    }


def reconcile(existing: Iterable[dict], incoming: Iterable[VariantRecord], today: str) -> ReconcileResult:
    """
    Classify incoming variants against the stored ones for the day `today`.

    `existing` are stored variant documents (sku_id / color / properties / prices).
    Their identity is recomputed through the same canonicalization, so documents
    written with un-normalized values still match their incoming counterpart.
    """
    existing = list(existing or [])
    existing_ids = {str(v.get("sku_id")) for v in existing}
    by_key = {variant_key(v.get("sku_id"), v.get("color"), v.get("properties")): v for v in existing}

    result = ReconcileResult()
    for record in collapse_duplicates(incoming):
        if record.sku_id not in existing_ids:
            result.to_append.append(record)
            continue

        stored = by_key.get(record.key)
        if stored is None:
            # known sku id, unseen color/property combination
            result.to_append.append(record)
            continue

        match = VariantUpdate(record=record, stored=_stored_identity(stored))
        today_point = (stored.get("prices") or {}).get(today)
        if not today_point:
            result.first_today.append(match)
            continue

        stored_sale = _to_number(today_point.get("sale_price"))
        incoming_sale = _to_number(record.sale_price)
        if stored_sale is not None and incoming_sale is not None and incoming_sale < stored_sale:
            result.lower_today.append(match)

    return result
