# tests/services/test_document_numbering.py
from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.services import document_numbering
from wms_stock.services.document_numbering import allocate_number, format_number, parse_sequence
from wms_stock.services.stock_errors import Conflict

pytestmark = pytest.mark.asyncio

OCT = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)
NOV = datetime(2026, 11, 1, 0, 0, tzinfo=timezone.utc)


def test_format_and_parse():
    assert format_number("RCP", "202610", 1) == "RCP-202610-00001"
    assert format_number("DO", "202610", 123) == "DO-202610-00123"
    assert parse_sequence("TRF-202610-00042") == 42
    assert parse_sequence("garbage") == 0


async def test_sequence_per_prefix_and_period(session: AsyncSession):
    got = [
        await allocate_number(session, "RCP", now=OCT),
        await allocate_number(session, "RCP", now=OCT),
        await allocate_number(session, "ADJ", now=OCT),
        await allocate_number(session, "RCP", now=NOV),
    ]
    await session.commit()

    assert got == [
        "RCP-202610-00001",
        "RCP-202610-00002",
        "ADJ-202610-00001",
        "RCP-202611-00001",
    ]


async def test_allocation_retries_after_collision(session: AsyncSession, monkeypatch):
    """
    模拟并发方先抢占了候选号：第一次算出的号已存在，
    主键冲突后回滚 SAVEPOINT 重新计算，拿到下一个号。
    """
    first = await allocate_number(session, "TRF", now=OCT)
    assert first == "TRF-202610-00001"

    real_peek = document_numbering.peek_next_number
    calls = {"n": 0}

    async def _stale_peek(sess, prefix, *, now=None):
        calls["n"] += 1
        if calls["n"] == 1:
            return first
        return await real_peek(sess, prefix, now=now)

    monkeypatch.setattr(document_numbering, "peek_next_number", _stale_peek)

    second = await allocate_number(session, "TRF", now=OCT)
    await session.commit()
    assert second == "TRF-202610-00002"
    assert calls["n"] == 2


async def test_allocation_gives_up_with_conflict(session: AsyncSession, monkeypatch):
    taken = await allocate_number(session, "DO", now=OCT)

    async def _always_taken(sess, prefix, *, now=None):
        return taken

    monkeypatch.setattr(document_numbering, "peek_next_number", _always_taken)

    with pytest.raises(Conflict) as ei:
        await allocate_number(session, "DO", now=OCT, max_retries=3)
    assert ei.value.context["retries"] == 3
