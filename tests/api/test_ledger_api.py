# tests/api/test_ledger_api.py
from __future__ import annotations

import csv
from io import StringIO

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.problem import assert_problem
from tests.helpers.stock import seed_stock

pytestmark = pytest.mark.asyncio


async def _history(client: httpx.AsyncClient, session: AsyncSession) -> None:
    """A-01：+10（seed） → -3（调拨出） ；B-01：+3（调拨入）"""
    await seed_stock(session, 1, 2, 10)
    r = await client.post(
        "/transfers",
        json={"from_location_id": 2, "to_location_id": 5, "lines": [{"product_id": 1, "requested_qty": 3}]},
    )
    tid = r.json()["id"]
    await client.post(f"/transfers/{tid}/submit")
    r = await client.post(f"/transfers/{tid}/execute")
    assert r.status_code == 200, r.text


async def test_list_movements_with_filters(client: httpx.AsyncClient, session: AsyncSession):
    await _history(client, session)

    r = await client.get("/ledger", params={"product_id": 1})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["total"] == 3
    assert (body["limit"], body["offset"]) == (50, 0)

    r = await client.get("/ledger", params={"warehouse_id": 2})
    items = r.json()["items"]
    assert [(x["transaction_type"], x["quantity"], x["balance_after"]) for x in items] == [("transfer_in", 3, 3)]

    r = await client.get("/ledger", params={"reference_type": "transfer", "limit": 1})
    assert r.json()["total"] == 2
    assert len(r.json()["items"]) == 1


async def test_product_history_and_running_balance(client: httpx.AsyncClient, session: AsyncSession):
    await _history(client, session)

    r = await client.get("/ledger/products/1")
    body = r.json()
    assert body["total"] == 3
    summary = {s["transaction_type"]: (s["count"], s["total_qty"]) for s in body["summary"]}
    assert summary == {"adjustment": (1, 10), "transfer_out": (1, -3), "transfer_in": (1, 3)}

    r = await client.get("/ledger/products/1/running-balance", params={"location_id": 2})
    rows = r.json()["rows"]
    assert [(x["quantity"], x["running_balance"]) for x in rows] == [(10, 10), (-3, 7)]
    assert rows[-1]["running_balance"] == rows[-1]["balance_after"]

    assert_problem(await client.get("/ledger/products/3"), 404, "NOT_FOUND")


async def test_export_csv_uses_list_filters(client: httpx.AsyncClient, session: AsyncSession):
    await _history(client, session)

    r = await client.get("/ledger/export", params={"reference_type": "transfer"})
    assert r.status_code == 200, r.text
    assert r.headers["content-type"].startswith("text/csv")
    assert r.headers["content-disposition"].startswith('attachment; filename="stock_ledger_')

    rows = list(csv.DictReader(StringIO(r.text)))
    assert [(x["transaction_type"], x["location"], x["quantity"]) for x in rows] == [
        ("transfer_in", "B-01", "3"),
        ("transfer_out", "A-01", "-3"),
    ]
    assert {x["sku"] for x in rows} == {"SKU-0001"}
    assert rows[0]["reference_number"].startswith("TRF-")
    assert (rows[1]["balance_before"], rows[1]["balance_after"]) == ("10", "7")

    r = await client.get("/ledger/export", params={"warehouse_id": 2, "transaction_type": "receipt"})
    assert r.text.strip().splitlines() == [
        "transaction_date,sku,product_name,warehouse,location,transaction_type,reference_type,"
        "reference_number,quantity,balance_before,balance_after,unit_price,total_value,actor_id,note"
    ]
