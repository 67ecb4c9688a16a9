# tests/api/test_main_smoke.py
from __future__ import annotations

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.stock import seed_stock

pytestmark = pytest.mark.asyncio


async def test_health_endpoints(client: httpx.AsyncClient):
    assert (await client.get("/healthz")).json() == {"status": "ok"}
    assert (await client.get("/ping")).json() == {"status": "ok"}
    assert (await client.get("/")).json()["name"] == "WMS Stock"


async def test_metrics_exposes_stock_counters(client: httpx.AsyncClient, session: AsyncSession):
    await seed_stock(session, 1, 2, 1)

    r = await client.get("/metrics")
    assert r.status_code == 200
    text = r.text
    assert "stock_ledger_postings_total" in text
    assert "stock_terminal_actions_total" in text
    assert "stock_reservation_events_total" in text
