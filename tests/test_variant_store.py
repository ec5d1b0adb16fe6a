"""Tests for the variant store: batch primitives, filtered queries and SKU allocation."""

import re

import pytest
from sqlalchemy import select

from tests.conftest import P1, P2, P3
from variant_service import variant_store
from variant_service.errors import (
    InsufficientStockError,
    InvalidArgumentError,
    NotFoundError,
)
from variant_service.tables import variants


async def test_insert_generates_sku_from_product_and_size(seed):
    created = await seed(P1, [{"size": "Travel size", "price": 10, "stock": 1}])
    assert re.fullmatch(r"P00001-TRAVELSIZE-\d{4}", created[0]["sku"])
    assert created[0]["discount_percent"] == 0
    assert created[0]["discount_price"] == 0
    assert created[0]["is_active"] is True


async def test_insert_keeps_supplied_sku(seed):
    created = await seed(P1, [{"size": "50ml", "price": 10, "stock": 1, "sku": "CUSTOM-1"}])
    assert created[0]["sku"] == "CUSTOM-1"


async def test_allocate_sku_falls_back_after_bounded_attempts(session_factory, seed, monkeypatch):
    await seed(P1, [{"size": "50ml", "price": 10, "stock": 1, "sku": "P00001-50ML-1234"}])
    monkeypatch.setattr(variant_store.random, "randint", lambda a, b: 1234)

    async with session_factory() as session:
        sku = await variant_store.allocate_sku(session, P1, "50 ml", max_attempts=3)

    assert sku != "P00001-50ML-1234"
    assert re.fullmatch(r"P00001-50ML-[0-9A-F]{8}", sku)


async def test_find_by_returns_variants_of_all_products(session_factory, scenario_variants):
    async with session_factory() as session:
        found = await variant_store.find_by(session, [P1, P2])
        only_p2 = await variant_store.find_by(session, [P2])
        none = await variant_store.find_by(session, [P3])

    assert {v["id"] for v in found} == {v["id"] for v in scenario_variants}
    assert [v["price"] for v in only_p2] == [50]
    assert none == []


async def test_bulk_apply_discount_writes_every_item(session_factory, scenario_variants, fetch):
    async with session_factory() as session:
        async with session.begin():
            await variant_store.bulk_apply_discount(
                session,
                [
                    {"variant_id": v["id"], "discount_percent": 10, "discount_price": 1}
                    for v in scenario_variants
                ],
            )
    for v in scenario_variants:
        stored = await fetch(v["id"])
        assert stored["discount_percent"] == 10
        assert stored["discount_price"] == 1


async def test_bulk_apply_discount_missing_variant_aborts_batch(
    session_factory, scenario_variants, fetch
):
    first = scenario_variants[0]
    with pytest.raises(NotFoundError):
        async with session_factory() as session:
            async with session.begin():
                await variant_store.bulk_apply_discount(
                    session,
                    [
                        {"variant_id": first["id"], "discount_percent": 10, "discount_price": 90},
                        {"variant_id": "missing", "discount_percent": 10, "discount_price": 90},
                    ],
                )
    assert (await fetch(first["id"]))["discount_percent"] == 0


async def test_clear_discounts_counts_only_changed_rows(session_factory, scenario_variants, fetch):
    a, b, _ = scenario_variants
    async with session_factory() as session:
        async with session.begin():
            await variant_store.apply_discount(session, a["id"], 25)
        async with session.begin():
            modified = await variant_store.clear_discounts(
                session, [a["id"], b["id"], "missing"]
            )
    assert modified == 1
    stored = await fetch(a["id"])
    assert (stored["discount_percent"], stored["discount_price"]) == (0, 0)


async def test_bulk_apply_stock_modes(session_factory, scenario_variants, fetch):
    a, b, c = scenario_variants  # stock 5, 8, 3
    async with session_factory() as session:
        async with session.begin():
            await variant_store.bulk_apply_stock(
                session,
                [
                    {"variant_id": a["id"], "type": "increase", "quantity": 2},
                    {"variant_id": b["id"], "type": "decrease", "quantity": 8},
                    {"variant_id": c["id"], "type": "set", "quantity": 42},
                ],
            )
    assert (await fetch(a["id"]))["stock"] == 7
    assert (await fetch(b["id"]))["stock"] == 0
    assert (await fetch(c["id"]))["stock"] == 42


async def test_bulk_apply_stock_underflow_rejects_whole_batch(
    session_factory, scenario_variants, fetch
):
    """One decrease of 10 against stock 5: nothing in the batch is written."""
    a, b, _ = scenario_variants
    with pytest.raises(InsufficientStockError) as exc_info:
        async with session_factory() as session:
            async with session.begin():
                await variant_store.bulk_apply_stock(
                    session,
                    [
                        {"variant_id": b["id"], "type": "increase", "quantity": 4},
                        {"variant_id": a["id"], "type": "decrease", "quantity": 10},
                    ],
                )

    assert exc_info.value.variant_id == a["id"]
    assert exc_info.value.available == 5
    assert (await fetch(a["id"]))["stock"] == 5
    assert (await fetch(b["id"]))["stock"] == 8


async def test_bulk_apply_stock_unknown_variant(session_factory, scenario_variants):
    with pytest.raises(NotFoundError):
        async with session_factory() as session:
            async with session.begin():
                await variant_store.bulk_apply_stock(
                    session, [{"variant_id": "missing", "type": "set", "quantity": 1}]
                )


async def test_apply_discount_recomputes_price(session_factory, scenario_variants):
    b = scenario_variants[1]  # price 200
    async with session_factory() as session:
        async with session.begin():
            updated = await variant_store.apply_discount(session, b["id"], 25)
    assert updated["discount_percent"] == 25
    assert updated["discount_price"] == 150

    async with session_factory() as session:
        async with session.begin():
            cleared = await variant_store.apply_discount(session, b["id"], 0)
    assert cleared["discount_price"] == 0


async def test_adjust_stock_cannot_go_negative(session_factory, scenario_variants):
    c = scenario_variants[2]  # stock 3
    with pytest.raises(InsufficientStockError):
        async with session_factory() as session:
            async with session.begin():
                await variant_store.adjust_stock(session, c["id"], -4)

    async with session_factory() as session:
        async with session.begin():
            updated = await variant_store.adjust_stock(session, c["id"], -3)
    assert updated["stock"] == 0


async def test_set_active_unknown_variant(session_factory):
    with pytest.raises(NotFoundError):
        async with session_factory() as session:
            async with session.begin():
                await variant_store.set_active(session, "missing", False)


class TestFilteredListing:
    @pytest.fixture
    async def catalog(self, seed, session_factory):
        await seed(
            P1,
            [
                {"size": "50ml", "price": 10, "stock": 0, "sku": "ABC-50ML"},
                {"size": "100ML", "price": 20, "stock": 4, "sku": "ABC-100ML"},
                {"size": "250ml", "price": 30, "stock": 9, "sku": "XYZ-250ML"},
            ],
        )
        async with session_factory() as session:
            async with session.begin():
                row = await session.execute(
                    select(variants.c.id).where(variants.c.sku == "XYZ-250ML")
                )
                await variant_store.set_active(session, row.scalar_one(), False)

    async def _query(self, session_factory, filters, **kwargs):
        async with session_factory() as session:
            rows, total = await variant_store.find_by_specification(session, filters, **kwargs)
        return [r["sku"] for r in rows], total

    async def test_size_is_case_insensitive_substring(self, session_factory, catalog):
        skus, total = await self._query(session_factory, {"size": "00m"}, sort_by="price", sort_order="asc")
        assert skus == ["ABC-100ML"]
        assert total == 1

    async def test_sku_search(self, session_factory, catalog):
        skus, _ = await self._query(session_factory, {"search": "abc"}, sort_by="price", sort_order="asc")
        assert skus == ["ABC-50ML", "ABC-100ML"]

    async def test_price_range_is_inclusive(self, session_factory, catalog):
        skus, _ = await self._query(
            session_factory, {"min_price": 10, "max_price": 20}, sort_by="price", sort_order="asc"
        )
        assert skus == ["ABC-50ML", "ABC-100ML"]

    async def test_in_stock_flag(self, session_factory, catalog):
        in_stock, _ = await self._query(session_factory, {"in_stock": True}, sort_by="price", sort_order="asc")
        out_of_stock, _ = await self._query(session_factory, {"in_stock": False})
        assert in_stock == ["ABC-100ML", "XYZ-250ML"]
        assert out_of_stock == ["ABC-50ML"]

    async def test_is_active_exact(self, session_factory, catalog):
        skus, total = await self._query(session_factory, {"is_active": False})
        assert skus == ["XYZ-250ML"]
        assert total == 1

    async def test_pagination_reports_total(self, session_factory, catalog):
        page1, total = await self._query(session_factory, {}, page=1, limit=2, sort_by="price", sort_order="desc")
        page2, _ = await self._query(session_factory, {}, page=2, limit=2, sort_by="price", sort_order="desc")
        assert total == 3
        assert page1 == ["XYZ-250ML", "ABC-100ML"]
        assert page2 == ["ABC-50ML"]

    async def test_rejects_unknown_sort_key(self, session_factory, catalog):
        with pytest.raises(InvalidArgumentError):
            await self._query(session_factory, {}, sort_by="password")

    async def test_rejects_non_positive_page(self, session_factory, catalog):
        with pytest.raises(InvalidArgumentError):
            await self._query(session_factory, {}, page=0)
