# tests/services/test_adjustment_service.py
from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.stock import assert_books_consistent, balance_of, movement_count, seed_stock, uniq_key
from wms_stock.models import Adjustment
from wms_stock.models.enums import AdjustmentReason
from wms_stock.schemas.adjustment import AdjustmentCreateIn
from wms_stock.services.adjustment_service import AdjustmentService
from wms_stock.services.reservation_service import ReservationService, ReserveLine
from wms_stock.services.stock_errors import InvalidState, OverReservation, ValidationFailed

pytestmark = pytest.mark.asyncio

svc = AdjustmentService()


async def _create(session: AsyncSession, lines, reason=AdjustmentReason.PHYSICAL_COUNT) -> int:
    doc = await svc.create(session, AdjustmentCreateIn(warehouse_id=1, reason=reason, lines=lines), actor_id=7)
    await session.commit()
    return doc.id


async def test_apply_posts_non_zero_variances(session: AsyncSession):
    await seed_stock(session, 1, 2, 10)
    await seed_stock(session, 2, 3, 5)

    aid = await _create(
        session,
        [
            {"product_id": 1, "location_id": 2, "counted_qty": 7},
            {"product_id": 2, "location_id": 3, "system_qty": 5, "counted_qty": 10},
            {"product_id": 1, "location_id": 3, "counted_qty": 0},
        ],
    )
    doc = await svc.get(session, aid)
    assert doc.number.startswith("ADJ-")
    assert [ln.system_qty for ln in doc.lines] == [10, 5, 0]
    assert [ln.variance for ln in doc.lines] == [-3, 5, 0]
    assert (doc.total_variance, doc.total_positive_variance, doc.total_negative_variance) == (2, 5, -3)

    res = await svc.apply(session, aid, actor_id=7)
    await session.commit()

    assert res.document.status == "applied"
    assert res.ledger_entries == 2
    assert await balance_of(session, 1, 2) == (7, 0)
    assert await balance_of(session, 2, 3) == (10, 0)
    assert await movement_count(session, reference_type="adjustment", reference_id=aid) == 2
    await assert_books_consistent(session)


async def test_location_must_belong_to_warehouse(session: AsyncSession):
    with pytest.raises(ValidationFailed):
        await svc.create(
            session,
            AdjustmentCreateIn(
                warehouse_id=1,
                reason=AdjustmentReason.FOUND,
                lines=[{"product_id": 1, "location_id": 5, "counted_qty": 1}],
            ),
            actor_id=7,
        )


async def test_apply_cannot_cut_below_reserved(session: AsyncSession):
    await seed_stock(session, 1, 2, 10)
    await ReservationService().reserve(
        session, reference_type="other", reference_id="HOLD", lines=[ReserveLine(1, 9, location_id=2)]
    )
    await session.commit()
    aid = await _create(session, [{"product_id": 1, "location_id": 2, "counted_qty": 5}], AdjustmentReason.DAMAGED)

    with pytest.raises(OverReservation):
        await svc.apply(session, aid, actor_id=7)
    await session.rollback()

    status = (await session.execute(select(Adjustment.status).where(Adjustment.id == aid))).scalar_one()
    assert status == "draft"
    assert await balance_of(session, 1, 2) == (10, 9)


async def test_apply_replay_and_reapply(session: AsyncSession):
    await seed_stock(session, 1, 2, 10)
    aid = await _create(session, [{"product_id": 1, "location_id": 2, "counted_qty": 12}], AdjustmentReason.FOUND)
    key = uniq_key("ADJ")

    await svc.apply(session, aid, actor_id=7, idempotency_key=key)
    await session.commit()

    again = await svc.apply(session, aid, actor_id=7, idempotency_key=key)
    assert again.already_applied is True

    with pytest.raises(InvalidState) as ei:
        await svc.apply(session, aid, actor_id=7)
    assert ei.value.context["current_status"] == "applied"
    await session.rollback()
    assert await balance_of(session, 1, 2) == (12, 0)


async def test_cancel_draft_only(session: AsyncSession):
    aid = await _create(session, [{"product_id": 1, "location_id": 2, "counted_qty": 1}], AdjustmentReason.OTHER)

    res = await svc.cancel(session, aid, actor_id=7)
    await session.commit()
    assert res.document.status == "canceled"

    with pytest.raises(InvalidState):
        await svc.apply(session, aid, actor_id=7)
    await session.rollback()
    assert await movement_count(session, reference_type="adjustment", reference_id=aid) == 0
