# tests/services/test_delivery_order_service.py
from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.stock import (
    aggregate_of,
    assert_books_consistent,
    balance_of,
    movement_count,
    seed_stock,
    uniq_key,
)
from wms_stock.models import DeliveryOrder, Reservation
from wms_stock.schemas.delivery_order import DeliveryOrderCreateIn, PackIn, PickIn
from wms_stock.services import idempotency
from wms_stock.services.delivery_order_service import DeliveryOrderService
from wms_stock.services.reservation_service import ReservationService, ReserveLine
from wms_stock.services.stock_errors import Conflict, InsufficientStock, InvalidState, ValidationFailed

pytestmark = pytest.mark.asyncio

svc = DeliveryOrderService()


async def _create(session: AsyncSession, lines, **kw):
    doc, warnings, _ = await svc.create(
        session, DeliveryOrderCreateIn(warehouse_id=kw.pop("warehouse_id", 1), lines=lines, **kw), actor_id=7
    )
    await session.commit()
    return doc.id, warnings


async def _pick_and_pack(session: AsyncSession, order_id: int, qtys: list[int]) -> None:
    lines = [{"line_no": i, "qty": q} for i, q in enumerate(qtys, start=1)]
    await svc.pick(session, order_id, PickIn(lines=lines), actor_id=7)
    await svc.pack(session, order_id, PackIn(lines=lines), actor_id=7)
    await session.commit()


async def _order_status(session: AsyncSession, order_id: int) -> str:
    return (await session.execute(select(DeliveryOrder.status).where(DeliveryOrder.id == order_id))).scalar_one()


async def _reservation_state(session: AsyncSession, reservation_id: int) -> tuple[str, str | None]:
    row = (
        await session.execute(
            select(Reservation.status, Reservation.release_reason).where(Reservation.id == reservation_id)
        )
    ).one()
    return row[0], row[1]


async def test_full_flow_consumes_reservation(session: AsyncSession):
    await seed_stock(session, 1, 2, 10)
    await seed_stock(session, 2, 3, 4)
    oid, warnings = await _create(
        session,
        [{"product_id": 1, "ordered_qty": 6}, {"product_id": 2, "ordered_qty": 4}],
        customer_name="ACME",
    )
    assert warnings == []

    doc, res = await svc.reserve(session, oid, actor_id=7)
    await session.commit()
    rid = res.reservation.id
    assert doc.status == "waiting"
    assert doc.reservation_id == rid
    assert [ln.reserved_qty for ln in doc.lines] == [6, 4]
    assert await balance_of(session, 1, 2) == (10, 6)
    assert await balance_of(session, 2, 3) == (4, 4)

    await svc.pick(session, oid, PickIn(lines=[{"line_no": 1, "qty": 6}, {"line_no": 2, "qty": 4}]), actor_id=7)
    doc = await svc.pack(
        session,
        oid,
        PackIn(lines=[{"line_no": 1, "qty": 6}], packages=[{"package_code": "BOX-1", "carrier": "UPS"}]),
        actor_id=7,
    )
    assert doc.status == "packed"
    doc = await svc.pack(session, oid, PackIn(lines=[{"line_no": 2, "qty": 4}]), actor_id=7)
    await session.commit()
    assert doc.status == "ready"
    assert [p.package_code for p in doc.packages] == ["BOX-1"]

    out = await svc.validate(session, oid, actor_id=7)
    await session.commit()

    assert out.document.status == "done"
    assert out.ledger_entries == 2
    assert {(e.location_id, e.quantity) for e in out.entries} == {(2, -6), (3, -4)}
    assert [ln.shipped_qty for ln in out.document.lines] == [6, 4]
    assert [ln.reserved_qty for ln in out.document.lines] == [0, 0]
    assert await _reservation_state(session, rid) == ("released", "consumed")
    assert await balance_of(session, 1, 2) == (4, 0)
    assert await balance_of(session, 2, 3) == (0, 0)
    assert await aggregate_of(session, 1) == (4, 0)
    await assert_books_consistent(session)


async def test_pick_and_pack_guards(session: AsyncSession):
    oid, _ = await _create(session, [{"product_id": 1, "ordered_qty": 2}])

    with pytest.raises(InvalidState):
        await svc.pack(session, oid, PackIn(lines=[{"line_no": 1, "qty": 1}]), actor_id=7)
    with pytest.raises(ValidationFailed):
        await svc.pick(session, oid, PickIn(lines=[{"line_no": 1, "qty": 3}]), actor_id=7)
    with pytest.raises(ValidationFailed):
        await svc.pick(session, oid, PickIn(lines=[{"line_no": 1, "qty": 1, "location_id": 5}]), actor_id=7)
    await session.rollback()

    await svc.pick(session, oid, PickIn(lines=[{"line_no": 1, "qty": 1}]), actor_id=7)
    await session.commit()
    with pytest.raises(ValidationFailed):
        await svc.pack(session, oid, PackIn(lines=[{"line_no": 1, "qty": 2}]), actor_id=7)


async def test_validate_without_location_needs_single_location(session: AsyncSession):
    """两库位各 3 件，单行要 5 件：不拆分库位 → InsufficientStock，无副作用"""
    await seed_stock(session, 1, 2, 3)
    await seed_stock(session, 1, 3, 3)
    oid, _ = await _create(session, [{"product_id": 1, "ordered_qty": 5}])
    await _pick_and_pack(session, oid, [5])

    with pytest.raises(InsufficientStock) as ei:
        await svc.validate(session, oid, actor_id=7)
    assert ei.value.context["requested"] == 5
    assert ei.value.context["available"] == 3
    await session.rollback()

    assert await _order_status(session, oid) == "ready"
    assert await balance_of(session, 1, 2) == (3, 0)
    assert await balance_of(session, 1, 3) == (3, 0)
    assert await movement_count(session, reference_type="delivery_order") == 0


async def test_validate_explicit_location_respects_other_reservations(session: AsyncSession):
    await seed_stock(session, 1, 2, 5)
    await ReservationService().reserve(
        session,
        reference_type="other",
        reference_id="HOLD-1",
        lines=[ReserveLine(product_id=1, qty=3, location_id=2)],
    )
    await session.commit()

    oid, _ = await _create(session, [{"product_id": 1, "ordered_qty": 4, "location_id": 2}])
    await _pick_and_pack(session, oid, [4])

    with pytest.raises(InsufficientStock) as ei:
        await svc.validate(session, oid, actor_id=7)
    assert ei.value.context["available"] == 2
    await session.rollback()
    assert await balance_of(session, 1, 2) == (5, 3)


async def test_reserve_twice_conflicts_but_key_replays(session: AsyncSession):
    await seed_stock(session, 1, 2, 10)
    oid, _ = await _create(session, [{"product_id": 1, "ordered_qty": 2}])
    key = uniq_key("DO-RSV")

    _, first = await svc.reserve(session, oid, actor_id=7, idempotency_key=key)
    await session.commit()

    _, again = await svc.reserve(session, oid, actor_id=7, idempotency_key=key)
    assert again.already_applied is True
    assert again.reservation.id == first.reservation.id

    with pytest.raises(Conflict) as ei:
        await svc.reserve(session, oid, actor_id=7)
    assert ei.value.context["reservation_ids"] == [first.reservation.id]
    await session.rollback()
    assert await balance_of(session, 1, 2) == (10, 2)


async def test_auto_reserve_reports_warnings_without_failing(session: AsyncSession):
    await seed_stock(session, 1, 2, 10)

    oid, warnings = await _create(
        session,
        [{"product_id": 1, "ordered_qty": 3}, {"product_id": 2, "ordered_qty": 2}],
        auto_reserve=True,
    )
    assert len(warnings) == 1
    assert warnings[0]["line"] == 2
    assert warnings[0]["product_id"] == 2
    assert await _order_status(session, oid) == "waiting"
    assert await balance_of(session, 1, 2) == (10, 3)

    oid2, warnings2 = await _create(session, [{"product_id": 2, "ordered_qty": 2}], auto_reserve=True)
    assert warnings2[0]["code"] == "NO_STOCK_RESERVABLE"
    assert await _order_status(session, oid2) == "draft"


async def test_cancel_releases_reservation(session: AsyncSession):
    await seed_stock(session, 1, 2, 10)
    oid, _ = await _create(session, [{"product_id": 1, "ordered_qty": 4}], auto_reserve=True)
    rid = (await svc.get(session, oid)).reservation_id

    res = await svc.cancel(session, oid, actor_id=7, reason="customer canceled")
    await session.commit()

    assert res.document.status == "canceled"
    assert [ln.reserved_qty for ln in res.document.lines] == [0]
    assert await _reservation_state(session, rid) == ("released", "document_canceled")
    assert await balance_of(session, 1, 2) == (10, 0)


async def test_validate_replay_with_key(session: AsyncSession):
    await seed_stock(session, 1, 2, 10)
    oid, _ = await _create(session, [{"product_id": 1, "ordered_qty": 3}])
    await _pick_and_pack(session, oid, [3])
    key = uniq_key("DO-VAL")

    first = await svc.validate(session, oid, actor_id=7, idempotency_key=key)
    await session.commit()
    again = await svc.validate(session, oid, actor_id=7, idempotency_key=key)

    assert first.already_applied is False
    assert again.already_applied is True
    assert await movement_count(session, reference_type="delivery_order", reference_id=oid) == 1
    assert await balance_of(session, 1, 2) == (7, 0)


async def test_validate_same_key_replays_when_first_lookup_misses(session: AsyncSession, monkeypatch):
    await seed_stock(session, 1, 2, 10)
    oid, _ = await _create(session, [{"product_id": 1, "ordered_qty": 3}])
    await _pick_and_pack(session, oid, [3])
    key = uniq_key("DO-VAL")
    await svc.validate(session, oid, actor_id=7, idempotency_key=key)
    await session.commit()

    real_find = idempotency.find_by_key
    calls: list[str] = []

    async def _miss_first(sess, model, k, *, column="idempotency_key"):
        # 并发请求首查时还看不到先行请求的提交
        calls.append(k)
        if len(calls) == 1:
            return None
        return await real_find(sess, model, k, column=column)

    monkeypatch.setattr(idempotency, "find_by_key", _miss_first)

    again = await svc.validate(session, oid, actor_id=7, idempotency_key=key)
    await session.commit()

    assert again.already_applied is True
    assert again.document.id == oid
    assert again.entries == []
    assert await movement_count(session, reference_type="delivery_order", reference_id=oid) == 1
    assert await balance_of(session, 1, 2) == (7, 0)


async def _create_raw(session: AsyncSession, payload: dict):
    doc, warnings, replayed = await svc.create(session, DeliveryOrderCreateIn(**payload), actor_id=7)
    await session.commit()
    return doc.id, warnings, replayed


async def _order_count(session: AsyncSession) -> int:
    return int((await session.execute(select(func.count()).select_from(DeliveryOrder))).scalar_one())


async def test_create_retry_with_same_key_returns_first_order(session: AsyncSession):
    await seed_stock(session, 1, 2, 10)
    payload = {
        "warehouse_id": 1,
        "lines": [{"product_id": 1, "ordered_qty": 3}],
        "auto_reserve": True,
        "idempotency_key": uniq_key("DO-NEW"),
    }

    oid1, warnings1, replayed1 = await _create_raw(session, payload)
    oid2, warnings2, replayed2 = await _create_raw(session, payload)

    assert replayed1 is False and replayed2 is True
    assert oid2 == oid1
    assert warnings1 == [] and warnings2 == []
    assert await _order_count(session) == 1
    assert await _order_status(session, oid1) == "waiting"
    assert await balance_of(session, 1, 2) == (10, 3)
    assert await aggregate_of(session, 1) == (10, 3)


async def test_create_retry_after_failed_auto_reserve_does_not_duplicate(session: AsyncSession):
    payload = {
        "warehouse_id": 1,
        "lines": [{"product_id": 2, "ordered_qty": 2}],
        "auto_reserve": True,
        "idempotency_key": uniq_key("DO-NEW"),
    }

    oid1, warnings1, _ = await _create_raw(session, payload)
    oid2, warnings2, replayed2 = await _create_raw(session, payload)

    assert warnings1[0]["code"] == "NO_STOCK_RESERVABLE"
    assert replayed2 is True and oid2 == oid1
    assert warnings2 == []
    assert await _order_count(session) == 1
    assert await _order_status(session, oid1) == "draft"


async def test_validate_is_all_or_nothing_across_lines(session: AsyncSession):
    await seed_stock(session, 1, 2, 10)
    await seed_stock(session, 2, 2, 1)
    oid, _ = await _create(session, [{"product_id": 1, "ordered_qty": 3}, {"product_id": 2, "ordered_qty": 2}])
    await _pick_and_pack(session, oid, [3, 2])

    with pytest.raises(InsufficientStock) as ei:
        await svc.validate(session, oid, actor_id=7)
    assert ei.value.context["line_no"] == 2

    # 外层事务不回滚：第 1 行的过账随 SAVEPOINT 一起撤销
    assert await movement_count(session, reference_type="delivery_order", reference_id=oid) == 0
    assert await balance_of(session, 1, 2) == (10, 0)
    assert await aggregate_of(session, 1) == (10, 0)
    assert await _order_status(session, oid) == "ready"

    await session.commit()
    assert await movement_count(session, reference_type="delivery_order") == 0
    await assert_books_consistent(session)
