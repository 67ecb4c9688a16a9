# wms_stock/db/engine.py
# 统一引擎工厂：PG 走 psycopg；SQLite 打开真正的 BEGIN / SAVEPOINT 语义
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

__all__ = ["create_async_engine_safe", "is_sqlite"]


def is_sqlite(url_str: str) -> bool:
    return make_url(url_str).get_backend_name().startswith("sqlite")


def _connect_args_for(url_str: str) -> dict[str, Any]:
    if is_sqlite(url_str):
        return {"check_same_thread": False}
    return {}


def _enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """
    pysqlite / aiosqlite 默认延迟 BEGIN，SAVEPOINT 行为不可靠：
    关闭驱动自带事务管理，由 SQLAlchemy 显式发 BEGIN。
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, _record):  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):  # pragma: no cover - driver hook
        conn.exec_driver_sql("BEGIN")


def create_async_engine_safe(url_str: str, *, echo: bool = False, null_pool: bool = False) -> AsyncEngine:
    """Async 引擎（'postgresql+psycopg' 或 'sqlite+aiosqlite'）。"""
    kwargs: dict[str, Any] = {"echo": echo}
    if make_url(url_str).get_backend_name().startswith("postgresql"):
        kwargs["pool_pre_ping"] = True
    connect_args = _connect_args_for(url_str)
    if connect_args:
        kwargs["connect_args"] = connect_args
    if null_pool:
        kwargs["poolclass"] = NullPool

    engine = create_async_engine(url_str, **kwargs)
    if is_sqlite(url_str):
        _enable_sqlite_savepoints(engine)
    return engine
