# tests/services/test_receipt_service.py
from __future__ import annotations

import re

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.stock import assert_books_consistent, balance_of, movement_count, uniq_key
from wms_stock.models import Location, Receipt
from wms_stock.models.enums import ReferenceType, TransactionType
from wms_stock.schemas.receipt import ReceiptCreateIn, ReceivedQtyIn
from wms_stock.services import ledger_writer
from wms_stock.services.receipt_service import ReceiptService
from wms_stock.services.stock_errors import (
    InvalidState,
    NegativeBalance,
    NotFound,
    PermissionDenied,
    ValidationFailed,
)

pytestmark = pytest.mark.asyncio

svc = ReceiptService()

DEFAULT_LINES = [
    {"product_id": 1, "expected_qty": 10},
    {"product_id": 2, "expected_qty": 5, "unit_price": "2.50"},
]


async def _create(session: AsyncSession, *, warehouse_id: int = 1, lines=None, **kw) -> int:
    doc = await svc.create(
        session,
        ReceiptCreateIn(warehouse_id=warehouse_id, lines=lines or DEFAULT_LINES, **kw),
        actor_id=7,
    )
    await session.commit()
    return doc.id


async def _ready(session: AsyncSession, receipt_id: int, received: list[tuple[int, int]]) -> None:
    await svc.update_received_qty(
        session,
        receipt_id,
        ReceivedQtyIn(lines=[{"line_no": no, "received_qty": q} for no, q in received]),
        actor_id=7,
    )
    await svc.transition(session, receipt_id, "ready", actor_id=7)
    await session.commit()


async def _status(session: AsyncSession, receipt_id: int) -> str:
    return (await session.execute(select(Receipt.status).where(Receipt.id == receipt_id))).scalar_one()


async def test_create_assigns_number_and_totals(session: AsyncSession):
    rid = await _create(session, supplier_name="ACME")
    doc = await svc.get(session, rid)

    assert re.fullmatch(r"RCP-\d{6}-00001", doc.number)
    assert doc.status == "draft"
    assert doc.created_by == 7
    assert (doc.total_expected_qty, doc.total_received_qty) == (15, 0)
    assert [ln.sku for ln in doc.lines] == ["SKU-0001", "SKU-0002"]
    assert [e.event_type for e in doc.events] == ["created"]

    rid2 = await _create(session)
    assert (await svc.get(session, rid2)).number.endswith("-00002")


async def test_create_rejects_foreign_location_and_deleted_product(session: AsyncSession):
    with pytest.raises(ValidationFailed):
        await svc.create(session, ReceiptCreateIn(warehouse_id=1, location_id=5, lines=DEFAULT_LINES), actor_id=7)
    with pytest.raises(NotFound):
        await svc.create(
            session, ReceiptCreateIn(warehouse_id=1, lines=[{"product_id": 3, "expected_qty": 1}]), actor_id=7
        )


async def test_manual_transitions_follow_table(session: AsyncSession):
    rid = await _create(session)

    await svc.transition(session, rid, "waiting", actor_id=7)
    await svc.transition(session, rid, "ready", actor_id=7)
    await session.commit()

    with pytest.raises(InvalidState) as ei:
        await svc.transition(session, rid, "draft", actor_id=7)
    assert ei.value.context["current_status"] == "ready"
    assert ei.value.context["required_status"] == ["waiting"]

    doc = await svc.transition(session, rid, "waiting", actor_id=7, note="supplier delayed")
    await session.commit()
    assert doc.status == "waiting"
    assert doc.events[-1].from_status == "ready"
    assert doc.events[-1].note == "supplier delayed"


async def test_validate_requires_ready_and_received_qty(session: AsyncSession):
    rid = await _create(session)

    with pytest.raises(InvalidState) as ei:
        await svc.validate(session, rid, actor_id=7)
    assert ei.value.context["required_status"] == ["ready"]
    await session.rollback()

    await svc.transition(session, rid, "ready", actor_id=7)
    await session.commit()
    with pytest.raises(InvalidState) as ei:
        await svc.validate(session, rid, actor_id=7)
    assert ei.value.context["total_received_qty"] == 0
    await session.rollback()

    assert await _status(session, rid) == "ready"
    assert await movement_count(session) == 0


async def test_update_received_qty(session: AsyncSession):
    rid = await _create(session)

    doc = await svc.update_received_qty(
        session, rid, ReceivedQtyIn(lines=[{"line_no": 2, "received_qty": 4}], note="partial"), actor_id=7
    )
    await session.commit()
    assert [ln.received_qty for ln in doc.lines] == [0, 4]
    assert doc.total_received_qty == 4
    assert doc.events[-1].event_type == "qty_updated"

    with pytest.raises(ValidationFailed):
        await svc.update_received_qty(
            session, rid, ReceivedQtyIn(lines=[{"line_no": 9, "received_qty": 1}]), actor_id=7
        )


async def test_validate_posts_to_receiving_location(session: AsyncSession):
    rid = await _create(session)
    await _ready(session, rid, [(1, 8), (2, 5)])
    key = uniq_key("RCP-VAL")

    res = await svc.validate(session, rid, actor_id=9, idempotency_key=key)
    await session.commit()

    doc = res.document
    assert res.already_applied is False
    assert res.ledger_entries == 2
    assert doc.status == "done"
    assert doc.completed_by == 9
    assert doc.idempotency_key == key
    assert {(e.location_id, e.quantity, e.transaction_type) for e in res.entries} == {
        (1, 8, "receipt"),
        (1, 5, "receipt"),
    }
    assert await balance_of(session, 1, 1) == (8, 0)
    assert await balance_of(session, 2, 1) == (5, 0)

    # 同键重放：不重复记账
    again = await svc.validate(session, rid, actor_id=9, idempotency_key=key)
    assert again.already_applied is True
    assert again.ledger_entries == 0
    assert again.document.id == rid
    assert await movement_count(session, reference_type="receipt", reference_id=rid) == 2

    # 不带键再次 validate → 已 done
    with pytest.raises(InvalidState):
        await svc.validate(session, rid, actor_id=9)
    await session.rollback()
    await assert_books_consistent(session)


async def test_validate_uses_header_location(session: AsyncSession):
    rid = await _create(session, location_id=3)
    await _ready(session, rid, [(1, 2)])

    await svc.validate(session, rid, actor_id=7)
    await session.commit()

    assert await balance_of(session, 1, 3) == (2, 0)
    assert await balance_of(session, 1, 1) == (0, 0)


async def test_validate_falls_back_to_first_location(session: AsyncSession):
    await session.execute(update(Location).where(Location.id == 1).values(is_deleted=True))
    await session.commit()

    rid = await _create(session)
    await _ready(session, rid, [(1, 3)])
    await svc.validate(session, rid, actor_id=7)
    await session.commit()

    assert await balance_of(session, 1, 2) == (3, 0)


async def test_validate_without_any_location_fails(session: AsyncSession):
    await session.execute(update(Location).where(Location.warehouse_id == 2).values(is_deleted=True))
    await session.commit()

    rid = await _create(session, warehouse_id=2)
    await _ready(session, rid, [(1, 3)])

    with pytest.raises(NotFound):
        await svc.validate(session, rid, actor_id=7)
    await session.rollback()
    assert await _status(session, rid) == "ready"


async def test_cancel_open_receipt_has_no_ledger_effect(session: AsyncSession):
    rid = await _create(session)

    res = await svc.cancel(session, rid, actor_id=7, reason="duplicate")
    await session.commit()
    assert res.document.status == "canceled"
    assert res.document.cancel_reason == "duplicate"
    assert res.ledger_entries == 0

    with pytest.raises(InvalidState):
        await svc.cancel(session, rid, actor_id=7)


async def test_cancel_done_receipt_requires_admin_and_reverses(session: AsyncSession):
    rid = await _create(session)
    await _ready(session, rid, [(1, 8), (2, 5)])
    await svc.validate(session, rid, actor_id=7)
    await session.commit()

    with pytest.raises(PermissionDenied):
        await svc.cancel(session, rid, actor_id=7)
    await session.rollback()

    res = await svc.cancel(session, rid, actor_id=1, reason="wrong supplier", is_admin=True)
    await session.commit()

    assert res.document.status == "canceled"
    assert sorted(e.quantity for e in res.entries) == [-8, -5]
    assert all(e.transaction_type == TransactionType.REVERSAL.value for e in res.entries)
    assert await balance_of(session, 1, 1) == (0, 0)
    assert await balance_of(session, 2, 1) == (0, 0)
    assert await movement_count(session, reference_type="receipt", reference_id=rid) == 4
    await assert_books_consistent(session)


async def test_reversal_blocked_when_stock_already_consumed(session: AsyncSession):
    rid = await _create(session)
    await _ready(session, rid, [(1, 8)])
    await svc.validate(session, rid, actor_id=7)
    await session.commit()

    await ledger_writer.post(
        session,
        product_id=1,
        location_id=1,
        transaction_type=TransactionType.DELIVERY,
        reference_type=ReferenceType.DELIVERY_ORDER,
        reference_id=500,
        reference_number="DO-TEST",
        quantity=-5,
    )
    await session.commit()

    with pytest.raises(NegativeBalance):
        await svc.cancel(session, rid, actor_id=1, is_admin=True)
    await session.rollback()

    assert await _status(session, rid) == "done"
    assert await balance_of(session, 1, 1) == (3, 0)
    assert await movement_count(session, transaction_type="reversal") == 0
