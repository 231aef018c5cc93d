"""
End-to-end ingestion runs against the fake client and repository.
"""
import dataclasses

import pytest

from price_tracker.aliexpress.models import NormalizedItem
from price_tracker.services.ingest_service import IngestService, partition, select_candidates

from fakes import (
    OBSERVED_AT,
    TODAY,
    FakeAliExpressClient,
    FakeRepository,
    detail_payload,
    error_page,
    listing_page,
    listing_record,
    sku,
)


def make_service(client, repository, config):
    return IngestService(client, repository, config, clock=lambda: OBSERVED_AT)


def test_partition_sizes():
    parts = partition(list(range(10)), 8)
    assert [len(p) for p in parts] == [2, 2, 1, 1, 1, 1, 1, 1]
    assert [x for p in parts for x in p] == list(range(10))
    assert partition([], 3) == [[], [], []]
    with pytest.raises(ValueError):
        partition([1], 0)


def test_select_candidates():
    items = [
        NormalizedItem(id="1", volume=100),
        NormalizedItem(id="2", volume=10),
        NormalizedItem(id="1", volume=5),
        NormalizedItem(id="3", volume=50),
    ]
    assert [i.id for i in select_candidates(items, 50)] == ["1", "3"]


async def test_run_writes_new_products_and_reports_failures(ingest_config):
    client = FakeAliExpressClient(
        listings={"100": [listing_page([listing_record("1"), listing_record("2")], total=3),
                          listing_page([listing_record("3", volume=10)])]},
        details={
            "1": detail_payload([sku("11"), sku("12", color="Blue")], l1="100"),
            "2": error_page(),
        },
    )
    repository = FakeRepository(categories={"100": "cat-100"})

    report = await make_service(client, repository, ingest_config).run(today=TODAY)

    assert report.categories == 1
    assert report.crawled_items == 3
    assert report.candidates == 2
    assert report.enriched == 1
    assert report.appended == 2
    assert report.failed_product_ids == ["2"]
    assert report.failed_categories == []

    ops = repository.writes["1"]
    assert len(ops) == 1
    assert "2" not in repository.writes
    # the error payload is fatal on the first attempt
    assert client.sleep.delays == []


async def test_existing_product_gets_first_point_of_the_day(ingest_config):
    client = FakeAliExpressClient(
        listings={"100": [listing_page([listing_record("1")])]},
        details={"1": detail_payload([sku("11")])},
    )
    stored = {
        "sku_id": "11",
        "color": "Red",
        "properties": '[{"Color":"Red","Size":"M"}]',
        "prices": {"2026-10-17": {"price": 1000, "sale_price": 800}},
    }
    repository = FakeRepository(categories={"100": "cat-100"}, products={"1": [stored]})

    report = await make_service(client, repository, ingest_config).run(today=TODAY)

    assert report.first_today == 1
    assert report.appended == 0
    assert len(repository.writes["1"]) == 2


async def test_unchanged_product_only_refreshes_base_fields(ingest_config):
    client = FakeAliExpressClient(
        listings={"100": [listing_page([listing_record("1")])]},
        details={"1": detail_payload([sku("11", sale=900)])},
    )
    stored = {
        "sku_id": "11",
        "color": "Red",
        "properties": '[{"Color":"Red","Size":"M"}]',
        "prices": {TODAY: {"price": 1000, "sale_price": 900}},
    }
    repository = FakeRepository(categories={"100": "cat-100"}, products={"1": [stored]})

    report = await make_service(client, repository, ingest_config).run(today=TODAY)

    assert (report.appended, report.first_today, report.lower_today) == (0, 0, 0)
    assert len(repository.writes["1"]) == 1


async def test_transient_detail_failure_is_retried(ingest_config):
    client = FakeAliExpressClient(
        listings={"100": [listing_page([listing_record("1")])]},
        details={"1": [ConnectionResetError(), detail_payload([sku("11")])]},
    )
    repository = FakeRepository(categories={"100": "cat-100"})

    report = await make_service(client, repository, ingest_config).run(today=TODAY)

    assert report.enriched == 1
    assert report.failed_product_ids == []
    assert len(client.sleep.delays) == 1


async def test_every_partition_is_processed(ingest_config):
    config = dataclasses.replace(ingest_config, partition_count=2)
    pages = {cid: [listing_page([])] for cid in ("100", "200", "300")}
    client = FakeAliExpressClient(listings=pages)
    repository = FakeRepository(categories={"100": "a", "200": "b", "300": "c"})

    report = await make_service(client, repository, config).run(today=TODAY)

    assert report.categories == 3
    assert {p["category_id"] for p in client.listing_calls()} == {"100", "200", "300"}


async def test_partition_index_selects_one_slice(ingest_config):
    config = dataclasses.replace(ingest_config, partition_count=2, partition_index=1)
    client = FakeAliExpressClient(listings={"300": [listing_page([])]})
    repository = FakeRepository(categories={"100": "a", "200": "b", "300": "c"})

    report = await make_service(client, repository, config).run(today=TODAY)

    assert report.categories == 1
    assert [p["category_id"] for p in client.listing_calls()] == ["300"]


async def test_explicit_categories_skip_partitioning(ingest_config):
    config = dataclasses.replace(ingest_config, partition_count=4, partition_index=0)
    client = FakeAliExpressClient(listings={"200": [listing_page([])]})
    repository = FakeRepository(categories={"100": "a", "200": "b"})

    report = await make_service(client, repository, config).run(category_ids=[200], today=TODAY)

    assert report.categories == 1
    assert [p["category_id"] for p in client.listing_calls()] == ["200"]


async def test_failed_category_does_not_stop_the_run(ingest_config):
    client = FakeAliExpressClient(
        listings={
            "100": RuntimeError("listing unavailable"),
            "200": [listing_page([listing_record("5", c1="200")])],
        },
        details={"5": detail_payload([sku("51")], l1="200")},
    )
    repository = FakeRepository(categories={"100": "a", "200": "b"})

    report = await make_service(client, repository, ingest_config).run(today=TODAY)

    assert report.failed_categories == ["100"]
    assert report.enriched == 1


async def test_error_response_still_refreshes_tracked_products(ingest_config):
    tracked = NormalizedItem(id="9", volume=500, tracked=True)
    client = FakeAliExpressClient(
        listings={"100": [error_page()]},
        details={"9": detail_payload([sku("91")])},
    )
    repository = FakeRepository(categories={"100": "cat-100"}, tracked={"cat-100": [tracked]})

    report = await make_service(client, repository, ingest_config).run(today=TODAY)

    assert report.diagnostics[0]["category_id"] == "100"
    assert report.diagnostics[0]["note"] == "error_response"
    assert report.enriched == 1
    assert "9" in repository.writes


async def test_listing_entry_wins_over_tracked_duplicate(ingest_config):
    tracked = NormalizedItem(id="1", volume=500, promotion_link="old-link", tracked=True)
    client = FakeAliExpressClient(
        listings={"100": [listing_page([listing_record("1", volume=80)])]},
        details={"1": detail_payload([sku("11")])},
    )
    repository = FakeRepository(categories={"100": "cat-100"}, tracked={"cat-100": [tracked]})

    report = await make_service(client, repository, ingest_config).run(today=TODAY)

    assert report.candidates == 1
    upsert = repr(repository.writes["1"][0])
    assert "https://s.click.example/1" in upsert
    assert "old-link" not in upsert
