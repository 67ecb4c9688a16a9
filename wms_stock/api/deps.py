# wms_stock/api/deps.py
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.core.logging import bind_actor
from wms_stock.services.idempotency import normalize_key


@dataclass(frozen=True)
class Actor:
    """调用方身份：认证在外部完成，这里只记录被告知的 id / 角色"""

    id: int
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


async def get_actor(
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
    x_actor_role: Optional[str] = Header(default=None, alias="X-Actor-Role"),
) -> Actor:
    """变更类接口必须带 X-Actor-Id（整数）"""
    raw = (x_actor_id or "").strip()
    if not raw:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-Actor-Id header is required")
    try:
        actor_id = int(raw)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-Actor-Id must be an integer")
    role = (x_actor_role or "user").strip().lower() or "user"
    bind_actor(actor_id)
    return Actor(id=actor_id, role=role)


async def get_idempotency_header(
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
) -> Optional[str]:
    return normalize_key(idempotency_key)


def pick_idempotency_key(body_key: Optional[str], header_key: Optional[str]) -> Optional[str]:
    """body 与 Idempotency-Key 头等价；同时给出时以 body 为准"""
    return normalize_key(body_key) or normalize_key(header_key)


@asynccontextmanager
async def write_tx(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """路由层事务：成功 commit，任何异常 rollback 后原样上抛"""
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
