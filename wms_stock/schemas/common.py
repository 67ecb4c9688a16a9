# wms_stock/schemas/common.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from wms_stock.utils.time import as_utc

_DATETIME_FIELDS = (
    "created_at",
    "updated_at",
    "completed_at",
    "canceled_at",
    "expected_date",
    "scheduled_date",
    "expires_at",
    "released_at",
    "transaction_date",
)
_DECIMAL_FIELDS = ("unit_price", "total_value", "weight")


class OrmOut(BaseModel):
    """输出基类：from_attributes + 时间统一 UTC + Decimal 以字符串输出"""

    model_config = ConfigDict(from_attributes=True)

    @field_serializer(*_DATETIME_FIELDS, check_fields=False)
    def _ser_dt(self, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    @field_serializer(*_DECIMAL_FIELDS, check_fields=False)
    def _ser_decimal(self, v: Optional[Decimal]) -> Optional[str]:
        return str(v) if v is not None else None


class EventOut(OrmOut):
    id: int
    event_type: str
    from_status: Optional[str] = None
    status: str
    actor_id: Optional[int] = None
    note: Optional[str] = None
    created_at: datetime


class DocumentHeaderOut(OrmOut):
    id: int
    number: str
    status: str
    idempotency_key: Optional[str] = None
    notes: Optional[str] = None

    created_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    completed_by: Optional[int] = None
    completed_at: Optional[datetime] = None
    canceled_by: Optional[int] = None
    canceled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None


class TerminalActionIn(BaseModel):
    """终态动作请求体：幂等键（也可走 Idempotency-Key 头，body 优先）"""

    model_config = ConfigDict(extra="ignore")

    idempotency_key: Optional[str] = Field(default=None, max_length=128)
    note: Optional[str] = Field(default=None, max_length=500)


class CancelIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    reason: Optional[str] = Field(default=None, max_length=500)


class TransitionIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str
    note: Optional[str] = Field(default=None, max_length=500)
