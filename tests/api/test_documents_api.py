# tests/api/test_documents_api.py
from __future__ import annotations

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.problem import assert_problem
from tests.helpers.stock import seed_stock

pytestmark = pytest.mark.asyncio


async def _ship_ready(client: httpx.AsyncClient, qty: int, **extra) -> int:
    r = await client.post(
        "/delivery-orders",
        json={"warehouse_id": 1, "lines": [{"product_id": 1, "ordered_qty": qty}], **extra},
    )
    assert r.status_code == 201, r.text
    oid = r.json()["delivery_order"]["id"]

    r = await client.post(f"/delivery-orders/{oid}/pick", json={"lines": [{"line_no": 1, "qty": qty}]})
    assert r.json()["status"] == "picking"
    r = await client.post(
        f"/delivery-orders/{oid}/pack",
        json={"lines": [{"line_no": 1, "qty": qty}], "packages": [{"package_code": "PKG-1"}]},
    )
    assert r.json()["status"] == "ready"
    return oid


async def test_delivery_order_flow(client: httpx.AsyncClient, session: AsyncSession):
    await seed_stock(session, 1, 2, 10)

    oid = await _ship_ready(client, 4, auto_reserve=True)
    r = await client.get(f"/delivery-orders/{oid}")
    assert r.json()["total_reserved_qty"] == 4
    assert (await client.get("/stock/1")).json()["aggregate"]["total_reserved"] == 4

    r = await client.post(f"/delivery-orders/{oid}/validate", json={"idempotency_key": "do-api-1"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["delivery_order"]["status"] == "done"
    assert body["delivery_order"]["total_shipped_qty"] == 4
    assert body["ledger_entries"] == 1

    agg = (await client.get("/stock/1")).json()["aggregate"]
    assert (agg["total_on_hand"], agg["total_reserved"]) == (6, 0)

    r = await client.get("/reservations", params={"reference_type": "delivery_order", "status": "released"})
    assert r.json()[0]["release_reason"] == "consumed"


async def test_delivery_create_retry_with_header_key(client: httpx.AsyncClient, session: AsyncSession):
    await seed_stock(session, 1, 2, 10)
    payload = {"warehouse_id": 1, "lines": [{"product_id": 1, "ordered_qty": 2}], "auto_reserve": True}
    headers = {"Idempotency-Key": "do-create-1"}

    first = await client.post("/delivery-orders", json=payload, headers=headers)
    again = await client.post("/delivery-orders", json=payload, headers=headers)
    assert first.status_code == 201, first.text
    assert again.status_code == 201, again.text

    assert first.json()["already_applied"] is False
    assert again.json()["already_applied"] is True
    assert again.json()["delivery_order"]["id"] == first.json()["delivery_order"]["id"]
    assert again.json()["delivery_order"]["number"] == first.json()["delivery_order"]["number"]

    r = await client.get("/delivery-orders")
    assert r.json()["total"] == 1
    assert (await client.get("/stock/1")).json()["aggregate"]["total_reserved"] == 2


async def test_delivery_insufficient_single_location(client: httpx.AsyncClient, session: AsyncSession):
    await seed_stock(session, 1, 2, 3)
    await seed_stock(session, 1, 3, 3)

    oid = await _ship_ready(client, 5)
    r = await client.post(f"/delivery-orders/{oid}/validate")
    body = assert_problem(r, 400, "INSUFFICIENT_STOCK")
    assert body["context"]["requested"] == 5
    assert body["context"]["available"] == 3

    assert (await client.get(f"/delivery-orders/{oid}")).json()["status"] == "ready"


async def test_delivery_reserve_endpoint(client: httpx.AsyncClient, session: AsyncSession):
    await seed_stock(session, 1, 2, 2)
    r = await client.post(
        "/delivery-orders",
        json={"warehouse_id": 1, "lines": [{"product_id": 1, "ordered_qty": 2}, {"product_id": 2, "ordered_qty": 1}]},
    )
    oid = r.json()["delivery_order"]["id"]

    r = await client.post(f"/delivery-orders/{oid}/reserve", json={"ttl_minutes": 15})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["delivery_order"]["status"] == "waiting"
    assert [ln["reserved_qty"] for ln in body["delivery_order"]["lines"]] == [2, 0]
    assert body["warnings"][0]["product_id"] == 2

    assert_problem(await client.post(f"/delivery-orders/{oid}/reserve"), 409, "CONFLICT")

    r = await client.post(f"/delivery-orders/{oid}/cancel", json={"reason": "out of stock"})
    assert r.json()["delivery_order"]["status"] == "canceled"
    assert (await client.get("/stock/1")).json()["aggregate"]["total_reserved"] == 0


async def test_transfer_flow(client: httpx.AsyncClient, session: AsyncSession):
    await seed_stock(session, 1, 2, 10)

    r = await client.post(
        "/transfers",
        json={"from_location_id": 2, "to_location_id": 2, "lines": [{"product_id": 1, "requested_qty": 1}]},
    )
    assert_problem(r, 422, "request_validation_error")

    r = await client.post(
        "/transfers",
        json={"from_location_id": 2, "to_location_id": 5, "lines": [{"product_id": 1, "requested_qty": 6}]},
    )
    assert r.status_code == 201, r.text
    tid = r.json()["id"]

    body = assert_problem(await client.post(f"/transfers/{tid}/execute"), 400, "INVALID_STATE")
    assert body["context"]["current_status"] == "draft"

    assert (await client.post(f"/transfers/{tid}/submit")).json()["status"] == "pending"
    assert (await client.post(f"/transfers/{tid}/dispatch", json={"note": "truck 7"})).json()["status"] == "in_transit"

    r = await client.post(f"/transfers/{tid}/execute")
    assert r.status_code == 200, r.text
    assert r.json()["transfer"]["status"] == "completed"
    assert r.json()["ledger_entries"] == 2

    locs = {x["location_id"]: x["quantity"] for x in (await client.get("/stock/1")).json()["locations"]}
    assert locs == {2: 4, 5: 6}


async def test_adjustment_flow(client: httpx.AsyncClient, session: AsyncSession):
    await seed_stock(session, 1, 2, 10)

    r = await client.post(
        "/adjustments",
        json={
            "warehouse_id": 1,
            "reason": "physical_count",
            "lines": [{"product_id": 1, "location_id": 2, "counted_qty": 8}],
        },
    )
    assert r.status_code == 201, r.text
    body = r.json()
    aid = body["id"]
    assert body["lines"][0]["system_qty"] == 10
    assert body["total_variance"] == -2

    r = await client.post(f"/adjustments/{aid}/apply", headers={"Idempotency-Key": "adj-api-1"})
    assert r.status_code == 200, r.text
    assert r.json()["adjustment"]["status"] == "applied"

    r = await client.post(f"/adjustments/{aid}/apply", headers={"Idempotency-Key": "adj-api-1"})
    assert r.json()["already_applied"] is True

    assert_problem(await client.post(f"/adjustments/{aid}/cancel"), 400, "INVALID_STATE")
    assert (await client.get("/stock/1")).json()["aggregate"]["total_on_hand"] == 8

    r = await client.post(
        "/adjustments",
        json={"warehouse_id": 1, "reason": "mystery", "lines": [{"product_id": 1, "location_id": 2, "counted_qty": 1}]},
    )
    assert_problem(r, 422, "request_validation_error")
