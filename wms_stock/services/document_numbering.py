# wms_stock/services/document_numbering.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.core.config import get_settings
from wms_stock.models.document_number import DocumentNumber
from wms_stock.services.stock_errors import Conflict
from wms_stock.utils.time import utc_now

logger = logging.getLogger(__name__)


def format_number(prefix: str, period: str, seq: int) -> str:
    return f"{prefix}-{period}-{int(seq):05d}"


def parse_sequence(number: str) -> int:
    try:
        return int(str(number).rsplit("-", 1)[1])
    except (IndexError, ValueError):
        return 0


async def peek_next_number(session: AsyncSession, prefix: str, *, now: Optional[datetime] = None) -> str:
    """取 prefix+YYYYMM 下字典序最后一个单号，序号 +1（没有则从 1 开始）"""
    period = (now or utc_now()).strftime("%Y%m")
    stmt = (
        select(DocumentNumber.number)
        .where(DocumentNumber.prefix == prefix)
        .where(DocumentNumber.period == period)
        .order_by(DocumentNumber.number.desc())
        .limit(1)
    )
    last = (await session.execute(stmt)).scalar_one_or_none()
    seq = parse_sequence(last) + 1 if last else 1
    return format_number(prefix, period, seq)


async def allocate_number(
    session: AsyncSession,
    prefix: str,
    *,
    now: Optional[datetime] = None,
    max_retries: Optional[int] = None,
) -> str:
    """
    CAS 式分配单号：

    - 算出候选号后在 SAVEPOINT 内 INSERT document_numbers（主键唯一）；
    - 主键冲突说明并发方已抢占，回滚 SAVEPOINT 重新计算；
    - 超过重试次数 → Conflict。
    """
    retries = int(max_retries or get_settings().NUMBERING_MAX_RETRIES)
    now = now or utc_now()
    period = now.strftime("%Y%m")

    for attempt in range(1, retries + 1):
        candidate = await peek_next_number(session, prefix, now=now)
        try:
            async with session.begin_nested():
                await session.execute(
                    insert(DocumentNumber).values(
                        number=candidate, prefix=prefix, period=period, created_at=utc_now()
                    )
                )
            return candidate
        except IntegrityError:
            logger.info("document number race on %s (attempt %d/%d)", candidate, attempt, retries)

    raise Conflict(
        f"could not allocate document number for {prefix}-{period}",
        context={"prefix": prefix, "period": period, "retries": retries},
    )
