# wms_stock/schemas/reservation.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from wms_stock.models.enums import ReservationReferenceType
from wms_stock.schemas.common import OrmOut


class ReserveLineIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    product_id: int
    location_id: Optional[int] = None
    qty: int = Field(gt=0)


class ReserveIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    reference_type: ReservationReferenceType
    reference_id: str = Field(min_length=1, max_length=64)
    lines: List[ReserveLineIn] = Field(min_length=1)
    ttl_minutes: Optional[int] = Field(default=None, gt=0)
    idempotency_key: Optional[str] = Field(default=None, max_length=128)


class ReleaseIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    reservation_id: Optional[int] = None
    reference_id: Optional[str] = None
    reference_type: Optional[ReservationReferenceType] = None
    reason: Optional[str] = Field(default=None, max_length=64)

    @model_validator(mode="after")
    def _need_target(self) -> "ReleaseIn":
        if self.reservation_id is None and not self.reference_id:
            raise ValueError("reservation_id or reference_id is required")
        return self


class ReservationLineOut(OrmOut):
    line_no: int
    product_id: int
    location_id: int
    warehouse_id: int
    qty: int


class ReservationOut(OrmOut):
    id: int
    reference_type: str
    reference_id: str
    idempotency_key: Optional[str] = None
    status: str
    expires_at: datetime
    released_at: Optional[datetime] = None
    release_reason: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime
    lines: List[ReservationLineOut] = Field(default_factory=list)


class ReserveOut(BaseModel):
    reservation: ReservationOut
    already_applied: bool = False
    errors: List[Dict[str, Any]] = Field(default_factory=list)


class ReleaseOut(BaseModel):
    released: List[ReservationOut]


class SweepOut(BaseModel):
    expired: int
