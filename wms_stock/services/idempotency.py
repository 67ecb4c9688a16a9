# wms_stock/services/idempotency.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.core.tx import atomic
from wms_stock.services.stock_errors import Conflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AlreadyApplied(Exception):
    """apply() 内部信号：行锁拿到后发现同 key 已完成，本次按回放处理"""

    def __init__(self, value: Any) -> None:
        super().__init__("already applied")
        self.value = value


@dataclass
class IdempotentResult(Generic[T]):
    value: T
    already_applied: bool = False


def normalize_key(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    key = str(raw).strip()
    return key or None


async def find_by_key(
    session: AsyncSession, model: Type[Any], key: Optional[str], *, column: str = "idempotency_key"
) -> Any | None:
    """按幂等键列（默认 idempotency_key）查找（populate_existing：SAVEPOINT 回滚后也能拿到最新行）"""
    key = normalize_key(key)
    if key is None:
        return None
    stmt = (
        select(model)
        .where(getattr(model, column) == key)
        .execution_options(populate_existing=True)
    )
    return (await session.execute(stmt)).scalars().first()


async def run_idempotent(
    session: AsyncSession,
    *,
    model: Type[Any],
    key: Optional[str],
    apply: Callable[[], Awaitable[T]],
    label: str,
    column: str = "idempotency_key",
) -> IdempotentResult[Any]:
    """
    幂等执行：

    1) 带 key 时先查：已存在 → 原样返回 already_applied=True（在任何其它校验之前）；
    2) 在 SAVEPOINT 内执行 apply()；
    3) 并发下 key 唯一索引冲突（IntegrityError）→ 回滚本块，再按 key 回读已存在记录。
       回读不到说明冲突来自别处，按 Conflict 上抛，由调用方决定是否重试；
    4) apply() 加锁后发现同 key 已被并发请求落地 → 抛 AlreadyApplied，按回放返回。
    """
    key = normalize_key(key)

    existing = await find_by_key(session, model, key, column=column)
    if existing is not None:
        logger.info("idempotent replay: %s key=%s id=%s", label, key, existing.id)
        return IdempotentResult(existing, already_applied=True)

    try:
        async with atomic(session):
            value = await apply()
    except AlreadyApplied as e:
        existing = await find_by_key(session, model, key, column=column) or e.value
        logger.info("idempotent replay under lock: %s key=%s id=%s", label, key, existing.id)
        return IdempotentResult(existing, already_applied=True)
    except IntegrityError as e:
        if key is None:
            raise Conflict(f"{label}: concurrent write conflict, retry") from e
        existing = await find_by_key(session, model, key, column=column)
        if existing is None:
            raise Conflict(f"{label}: concurrent write conflict, retry", context={"idempotency_key": key}) from e
        logger.info("idempotent replay after race: %s key=%s id=%s", label, key, existing.id)
        return IdempotentResult(existing, already_applied=True)

    return IdempotentResult(value, already_applied=False)
