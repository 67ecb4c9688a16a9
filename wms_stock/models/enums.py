# wms_stock/models/enums.py
from __future__ import annotations

from enum import Enum


class TransactionType(str, Enum):
    RECEIPT = "receipt"
    ADJUSTMENT = "adjustment"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    DELIVERY = "delivery"
    REVERSAL = "reversal"
    CYCLE_COUNT = "cycle_count"


class ReferenceType(str, Enum):
    RECEIPT = "receipt"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    DELIVERY_ORDER = "delivery_order"
    RESERVATION = "reservation"
    CYCLE_COUNT = "cycle_count"


class ReservationReferenceType(str, Enum):
    DELIVERY_ORDER = "delivery_order"
    TRANSFER = "transfer"
    PICK = "pick"
    OTHER = "other"


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    RELEASED = "released"
    EXPIRED = "expired"


class ReceiptStatus(str, Enum):
    DRAFT = "draft"
    WAITING = "waiting"
    READY = "ready"
    DONE = "done"
    CANCELED = "canceled"


class DeliveryOrderStatus(str, Enum):
    DRAFT = "draft"
    WAITING = "waiting"
    PICKING = "picking"
    PACKED = "packed"
    READY = "ready"
    DONE = "done"
    CANCELED = "canceled"


class TransferStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    COMPLETED = "completed"
    CANCELED = "canceled"


class AdjustmentStatus(str, Enum):
    DRAFT = "draft"
    APPLIED = "applied"
    CANCELED = "canceled"


class AdjustmentReason(str, Enum):
    PHYSICAL_COUNT = "physical_count"
    DAMAGED = "damaged"
    LOST = "lost"
    FOUND = "found"
    EXPIRED = "expired"
    OTHER = "other"


class DocumentEventType(str, Enum):
    CREATED = "created"
    EDITED = "edited"
    STATUS_CHANGED = "status_changed"
    QTY_UPDATED = "qty_updated"
    RESERVED = "reserved"
    PICKED = "picked"
    PACKED = "packed"
    SUBMITTED = "submitted"
    IN_TRANSIT = "in_transit"
    VALIDATED = "validated"
    EXECUTED = "executed"
    APPLIED = "applied"
    CANCELED = "canceled"
