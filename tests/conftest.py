# tests/conftest.py
from __future__ import annotations

import os
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# 测试期固定小 TTL / 批量，避免依赖本机 .env
os.environ.setdefault("ENV", "test")
os.environ.setdefault("RESERVATION_SWEEP_BATCH_SIZE", "2")

from wms_stock.db.base import Base, init_models  # noqa: E402
from wms_stock.db.engine import create_async_engine_safe  # noqa: E402
from wms_stock.db.session import get_session, normalize_async_dsn  # noqa: E402
from wms_stock.main import app  # noqa: E402
from wms_stock.models import Location, Product, Warehouse  # noqa: E402

init_models()

# ==========================
# 数据库 DSN：
#   - 显式 WMS_TEST_DATABASE_URL（PostgreSQL）优先
#   - 未设置时每个用例一个临时 SQLite 文件
# ==========================
TEST_DATABASE_URL = os.getenv("WMS_TEST_DATABASE_URL")


def _is_pg() -> bool:
    return bool(TEST_DATABASE_URL) and "postgres" in TEST_DATABASE_URL


def pytest_collection_modifyitems(config, items):
    if _is_pg():
        return
    skip_pg = pytest.mark.skip(reason="需要 WMS_TEST_DATABASE_URL 指向 PostgreSQL")
    for item in items:
        if "pg" in item.keywords:
            item.add_marker(skip_pg)


# =========================================
# 每用例独立 Engine（NullPool，避免跨 loop）+ 全量建表
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    url = normalize_async_dsn(TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'wms_stock_test.db'}")
    engine = create_async_engine_safe(url, null_pool=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


# =========================================
# 最小种子数据（每测试一次）
#   WH1(id=1)：RECEIVING(1) / A-01(2) / A-02(3)
#   WH2(id=2)：RECEIVING(4) / B-01(5)
#   商品：1 / 2 正常，3 已软删
# =========================================
@pytest_asyncio.fixture(autouse=True, scope="function")
async def _db_seed(async_session_maker) -> None:
    async with async_session_maker() as sess:
        sess.add_all(
            [
                Warehouse(id=1, code="WH1", name="主仓"),
                Warehouse(id=2, code="WH2", name="分仓"),
                Product(id=1, sku="SKU-0001", name="UT-ITEM-1"),
                Product(id=2, sku="SKU-0002", name="UT-ITEM-2"),
                Product(id=3, sku="SKU-0003", name="UT-ITEM-DELETED", is_deleted=True),
            ]
        )
        await sess.flush()
        sess.add_all(
            [
                Location(id=1, warehouse_id=1, code="RECEIVING", name="收货区"),
                Location(id=2, warehouse_id=1, code="A-01", name="A 区 01"),
                Location(id=3, warehouse_id=1, code="A-02", name="A 区 02"),
                Location(id=4, warehouse_id=2, code="RECEIVING", name="收货区"),
                Location(id=5, warehouse_id=2, code="B-01", name="B 区 01"),
            ]
        )
        await sess.commit()


@pytest_asyncio.fixture(scope="function")
async def session(async_session_maker) -> AsyncGenerator[AsyncSession, None]:
    """标准 Session：用例自己 commit；结束时未提交的部分回滚"""
    async with async_session_maker() as sess:
        try:
            yield sess
        finally:
            if sess.in_transaction():
                await sess.rollback()


# =========================================
# FastAPI / httpx AsyncClient（get_session 指向测试库）
# =========================================
@pytest_asyncio.fixture(scope="function")
async def client(async_session_maker) -> AsyncGenerator[httpx.AsyncClient, None]:
    async def _override_session() -> AsyncGenerator[AsyncSession, None]:
        async with async_session_maker() as sess:
            yield sess

    app.dependency_overrides[get_session] = _override_session
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(
            transport=transport,
            base_url="http://testserver",
            headers={"X-Actor-Id": "7"},
            timeout=httpx.Timeout(10.0, connect=5.0, read=10.0, write=5.0, pool=5.0),
        ) as c:
            yield c
    finally:
        app.dependency_overrides.pop(get_session, None)
