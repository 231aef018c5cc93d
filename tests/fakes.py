"""
In-process stand-ins for aiohttp, the AliExpress client and the Mongo store.
"""
import json
from datetime import datetime, timezone

from price_tracker.aliexpress.fetch_products import LISTING_METHOD
from price_tracker.database.products import WriteOutcome

TODAY = "2026-10-18"
OBSERVED_AT = datetime(2026, 10, 18, 3, 0, tzinfo=timezone.utc)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


# ----------------------------------------------------------------------
# aiohttp
# ----------------------------------------------------------------------

class FakeResponse:
    def __init__(self, status=200, body="", headers=None):
        self.status = status
        self.headers = headers or {}
        if isinstance(body, str):
            body = body.encode("utf-8")
        elif not isinstance(body, bytes):
            body = json.dumps(body).encode("utf-8")
        self._body = body

    async def read(self):
        return self._body

    async def text(self):
        return self._body.decode("utf-8")


class _RequestContext:
    def __init__(self, outcome):
        self.outcome = outcome

    async def __aenter__(self):
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Plays back `script` one entry per GET: a FakeResponse or an exception to raise."""

    def __init__(self, script):
        self.script = list(script)
        self.requests = []

    def get(self, url, timeout=None):
        self.requests.append(url)
        if not self.script:
            raise AssertionError(f"unexpected request to {url}")
        return _RequestContext(self.script.pop(0))


# ----------------------------------------------------------------------
# Upstream payloads
# ----------------------------------------------------------------------

def listing_record(product_id, c1="100", c2=None, volume=100, price="1000"):
    return {
        "product_id": product_id,
        "product_title": f"Product {product_id}",
        "product_main_image_url": f"https://img.example/{product_id}.jpg",
        "target_app_sale_price": price,
        "target_app_sale_price_currency": "KRW",
        "promotion_link": f"https://s.click.example/{product_id}",
        "lastest_volume": volume,
        "review_count": 3,
        "first_level_category_id": c1,
        "first_level_category_name": "Level 1",
        "second_level_category_id": c2,
        "second_level_category_name": "Level 2" if c2 else None,
    }


def listing_page(records, total=None):
    result = {"products": {"product": records}, "current_record_count": len(records)}
    if total is not None:
        result["total_record_count"] = total
    return {"aliexpress_affiliate_product_query_response": {"resp_result": {"result": result}}}


def error_page(code="InvalidParameter", msg="bad request"):
    return {"error_response": {"code": code, "sub_code": "isv.invalid", "msg": msg}}


def sku(sku_id, price=1000, sale=900, color="Red", props=None):
    return {
        "sku_id": sku_id,
        "color": color,
        "link": f"https://ae.example/item?sku={sku_id}",
        "sku_properties": props if props is not None else [{"Color": color, "Size": "M"}],
        "currency": "KRW",
        "price_with_tax": price,
        "sale_price_with_tax": sale,
    }


def detail_payload(skus, l1="100", l2="200", title="Widget"):
    return {
        "aliexpress_affiliate_product_sku_detail_get_response": {
            "result": {
                "result": {
                    "ae_item_info": {
                        "title": title,
                        "store_name": "Widget Store",
                        "product_score": "4.8",
                        "review_number": "120",
                        "image_link": "https://img.example/main.jpg",
                        "additional_image_links": {"string": ["https://img.example/1.jpg"]},
                        "original_link": "https://ae.example/item",
                        "display_category_id_l1": l1,
                        "display_category_id_l2": l2,
                    },
                    "ae_item_sku_info": {"traffic_sku_info_list": {"traffic_sku_info_dto": skus}},
                }
            }
        }
    }


class FakeAliExpressClient:
    """
    Routes `call` by method: listings by category id and page number,
    details by product id. Exceptions in the tables are raised.
    """

    def __init__(self, listings=None, details=None):
        self.listings = listings or {}
        self.details = details or {}
        self.calls = []
        self.sleep = SleepRecorder()

    def _next(self, outcome):
        if isinstance(outcome, list):
            if not outcome:
                raise AssertionError("no scripted response left")
            outcome = outcome.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def call(self, method, params, policy=None):
        self.calls.append((method, dict(params)))
        if method == LISTING_METHOD:
            pages = self.listings[params["category_id"]]
            if isinstance(pages, BaseException):
                raise pages
            index = params["page_no"] - 1
            if index >= len(pages):
                raise AssertionError(f"crawled past the last page of {params['category_id']}")
            return self._next(pages[index])
        return self._next(self.details[params["product_id"]])

    def listing_calls(self, category_id=None):
        return [
            p for m, p in self.calls
            if m == LISTING_METHOD and (category_id is None or p["category_id"] == category_id)
        ]


# ----------------------------------------------------------------------
# Store
# ----------------------------------------------------------------------

class FakeRepository:
    def __init__(self, categories=None, products=None, tracked=None):
        # c_id -> _id
        self.categories = categories or {}
        # product id -> stored variants
        self.products = products or {}
        # category _id -> tracked NormalizedItems
        self.tracked = tracked or {}
        self.writes = {}

    async def list_category_ids(self):
        return list(self.categories)

    async def find_category(self, category_id):
        if category_id not in self.categories:
            return None
        return {"_id": self.categories[category_id], "c_id": category_id}

    async def resolve_categories(self, category_ids):
        return {c: self.categories[c] for c in category_ids if c in self.categories}

    async def tracked_items(self, category_ref):
        return list(self.tracked.get(category_ref, []))

    async def load_variants(self, product_id):
        return product_id in self.products, list(self.products.get(product_id, []))

    async def bulk_write(self, product_id, ops):
        self.writes[product_id] = ops
        return WriteOutcome(product_id=product_id, submitted=len(ops))


class FakeCursor:
    def __init__(self, docs):
        self.docs = list(docs)

    async def to_list(self, length=None):
        return list(self.docs)

    def __aiter__(self):
        self._iter = iter(self.docs)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    def __init__(self, docs=None, bulk_error=None, bulk_result=None):
        self.docs = docs or []
        self.bulk_error = bulk_error
        self.bulk_result = bulk_result
        self.bulk_calls = []
        self.queries = []

    def find(self, query=None, projection=None):
        self.queries.append(query)
        return FakeCursor(self.docs)

    async def find_one(self, query, projection=None):
        self.queries.append(query)
        for doc in self.docs:
            if all(doc.get(k) == v for k, v in query.items()):
                return doc
        return None

    async def bulk_write(self, ops, ordered=True):
        self.bulk_calls.append((ops, ordered))
        if self.bulk_error is not None:
            raise self.bulk_error
        return self.bulk_result


class FakeDatabase(dict):
    def __missing__(self, name):
        self[name] = FakeCollection()
        return self[name]
