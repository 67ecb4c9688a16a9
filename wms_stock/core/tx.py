# wms_stock/core/tx.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    终态动作的原子边界（SAVEPOINT）：

    - 外层事务由调用方（router / job）控制，本块不 commit；
    - 块内任何异常都会让本块写入（台账 / 余额 / 汇总 / 单据状态）整体回滚，
      异常原样上抛。
    """
    async with session.begin_nested():
        yield session
