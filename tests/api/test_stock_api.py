# tests/api/test_stock_api.py
from __future__ import annotations

import httpx
import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.problem import assert_problem
from tests.helpers.stock import seed_stock
from wms_stock.models import ProductAggregate

pytestmark = pytest.mark.asyncio


async def _seed(session: AsyncSession) -> None:
    await seed_stock(session, 1, 2, 10)
    await seed_stock(session, 1, 5, 5)


async def test_product_stock_view(client: httpx.AsyncClient, session: AsyncSession):
    await _seed(session)

    r = await client.get("/stock/1")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["sku"] == "SKU-0001"
    assert body["aggregate"] == {
        "product_id": 1,
        "total_on_hand": 15,
        "total_reserved": 0,
        "total_available": 15,
    }
    assert [(x["location_id"], x["location_code"], x["available"]) for x in body["locations"]] == [
        (2, "A-01", 10),
        (5, "B-01", 5),
    ]

    assert_problem(await client.get("/stock/3"), 404, "NOT_FOUND")


async def test_stock_list_filters(client: httpx.AsyncClient, session: AsyncSession):
    await _seed(session)
    await seed_stock(session, 2, 3, 4)
    r = await client.post(
        "/stock/reserve",
        json={"reference_type": "other", "reference_id": "LIST-1", "lines": [{"product_id": 2, "qty": 4, "location_id": 3}]},
    )
    assert r.status_code == 201, r.text

    r = await client.get("/stock")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["total"] == 3
    assert [(x["product_id"], x["location_id"]) for x in body["items"]] == [(1, 2), (1, 5), (2, 3)]
    first = body["items"][0]
    assert (first["sku"], first["warehouse_code"], first["location_code"]) == ("SKU-0001", "WH1", "A-01")

    r = await client.get("/stock", params={"warehouse_id": 1})
    assert [(x["product_id"], x["location_id"]) for x in r.json()["items"]] == [(1, 2), (2, 3)]

    r = await client.get("/stock", params={"location_id": 5, "warehouse_id": 1})
    assert [x["location_id"] for x in r.json()["items"]] == [5]

    r = await client.get("/stock", params={"sku": "sku-0002"})
    assert [(x["quantity"], x["reserved"], x["available"]) for x in r.json()["items"]] == [(4, 4, 0)]

    r = await client.get("/stock", params={"available_only": "true"})
    assert r.json()["total"] == 2

    r = await client.get("/stock", params={"sku": "NOPE"})
    assert r.json() == {"items": [], "total": 0, "limit": 50, "offset": 0}

    r = await client.get("/stock", params={"limit": 1, "offset": 1})
    body = r.json()
    assert body["total"] == 3
    assert [(x["product_id"], x["location_id"]) for x in body["items"]] == [(1, 5)]


async def test_availability(client: httpx.AsyncClient, session: AsyncSession):
    await _seed(session)

    r = await client.get("/stock/availability", params={"product_id": 1, "qty": 12})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["total_available"] == 15
    assert body["is_available"] is True
    assert body["shortfall"] == 0
    assert body["fulfillment"] == [{"warehouse_id": 1, "qty": 10}, {"warehouse_id": 2, "qty": 2}]
    assert [w["warehouse_code"] for w in body["warehouses"]] == ["WH1", "WH2"]

    r = await client.get("/stock/availability", params={"product_id": 1, "qty": 20})
    assert r.json()["is_available"] is False
    assert r.json()["shortfall"] == 5

    r = await client.get("/stock/availability", params={"product_id": 1, "qty": 0})
    assert_problem(r, 422, "request_validation_error")


async def test_consistency_and_recompute(client: httpx.AsyncClient, session: AsyncSession):
    await _seed(session)
    await session.execute(
        update(ProductAggregate).where(ProductAggregate.product_id == 1).values(total_on_hand=99)
    )
    await session.commit()

    r = await client.get("/stock/consistency", params={"product_id": 1})
    body = r.json()
    assert body["ok"] is False
    assert body["balance_mismatches"] == []
    assert body["aggregate_mismatches"][0]["aggregate_on_hand"] == 99
    assert body["aggregate_mismatches"][0]["balance_on_hand"] == 15

    r = await client.post("/stock/1/recompute")
    assert r.status_code == 200, r.text
    assert r.json()["total_on_hand"] == 15

    assert (await client.get("/stock/consistency")).json()["ok"] is True


async def test_reserve_and_release(client: httpx.AsyncClient, session: AsyncSession):
    await _seed(session)
    payload = {
        "reference_type": "other",
        "reference_id": "API-1",
        "lines": [{"product_id": 1, "qty": 3, "location_id": 2}, {"product_id": 2, "qty": 1}],
    }

    r = await client.post("/stock/reserve", json=payload, headers={"Idempotency-Key": "rsv-api-1"})
    assert r.status_code == 201, r.text
    body = r.json()
    rid = body["reservation"]["id"]
    assert body["already_applied"] is False
    assert body["reservation"]["status"] == "active"
    assert [(x["location_id"], x["qty"]) for x in body["reservation"]["lines"]] == [(2, 3)]
    assert body["errors"][0]["product_id"] == 2

    r = await client.post("/stock/reserve", json=payload, headers={"Idempotency-Key": "rsv-api-1"})
    assert r.json()["already_applied"] is True
    assert r.json()["reservation"]["id"] == rid

    r = await client.get("/stock/1")
    assert r.json()["aggregate"]["total_reserved"] == 3

    r = await client.get("/reservations", params={"reference_id": "API-1"})
    assert [x["id"] for x in r.json()] == [rid]
    r = await client.get(f"/reservations/{rid}")
    assert r.json()["reference_type"] == "other"

    r = await client.post("/stock/release", json={"reservation_id": rid, "reason": "manual"})
    assert r.status_code == 200, r.text
    assert r.json()["released"][0]["status"] == "released"
    assert r.json()["released"][0]["release_reason"] == "manual"

    assert_problem(await client.post("/stock/release", json={"reservation_id": rid}), 404, "NOT_FOUND")
    assert_problem(await client.post("/stock/release", json={}), 422, "request_validation_error")

    r = await client.get("/stock/1")
    assert r.json()["aggregate"]["total_reserved"] == 0


async def test_reserve_nothing_available(client: httpx.AsyncClient):
    r = await client.post(
        "/stock/reserve",
        json={"reference_type": "other", "reference_id": "API-2", "lines": [{"product_id": 1, "qty": 1}]},
    )
    body = assert_problem(r, 400, "NO_STOCK_RESERVABLE")
    assert body["details"][0]["line"] == 1
    assert (await client.get("/reservations")).json() == []


async def test_sweep_endpoint(client: httpx.AsyncClient, session: AsyncSession):
    await _seed(session)

    r = await client.post("/reservations/sweep")
    assert r.status_code == 200, r.text
    assert r.json() == {"expired": 0}

    assert_problem(await client.post("/reservations/sweep", headers={"X-Actor-Id": ""}), 401, "http_error")
