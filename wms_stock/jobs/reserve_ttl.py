"""
Reservation TTL Job（统一入口）

目标：
  - 回收 reservations(status='active', expires_at < now)，归还 reserved
  - 与读时惰性过期共用 ReservationService.expire_one，不会重复归还

用法：
  - 本地/生产均可使用：
        python -m wms_stock.jobs.reserve_ttl
  - 也可以由 scheduler 定期调用 main()。
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wms_stock.core.config import get_settings
from wms_stock.core.logging import setup_logging
from wms_stock.db.engine import create_async_engine_safe
from wms_stock.db.session import normalize_async_dsn
from wms_stock.services.reservation_ttl import sweep_expired_reservations
from wms_stock.utils.time import utc_now

logger = logging.getLogger(__name__)


async def run_once(session: AsyncSession) -> int:
    settings = get_settings()
    try:
        expired = await sweep_expired_reservations(
            session, now=utc_now(), batch_size=settings.RESERVATION_SWEEP_BATCH_SIZE
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("reservation ttl sweep done: expired=%d", expired)
    return expired


async def main() -> None:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, sql_echo=settings.SQL_ECHO)

    engine = create_async_engine_safe(normalize_async_dsn(settings.DATABASE_URL), null_pool=True)
    maker = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with maker() as session:
            await run_once(session)
    finally:
        await engine.dispose()


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
