# wms_stock/utils/time.py
from __future__ import annotations

from datetime import datetime, timezone

UTC = timezone.utc


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """
    统一成 aware UTC：
    - SQLite 读回的 DateTime 是 naive，按 UTC 解释；
    - PG timestamptz 原样转换到 UTC。
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
