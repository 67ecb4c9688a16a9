# wms_stock/models/__init__.py
from wms_stock.models.adjustment import Adjustment, AdjustmentEvent, AdjustmentLine
from wms_stock.models.delivery_order import (
    DeliveryOrder,
    DeliveryOrderEvent,
    DeliveryOrderLine,
    DeliveryPackage,
)
from wms_stock.models.document_number import DocumentNumber
from wms_stock.models.location import Location
from wms_stock.models.product import Product
from wms_stock.models.product_aggregate import ProductAggregate
from wms_stock.models.receipt import Receipt, ReceiptEvent, ReceiptLine
from wms_stock.models.reservation import Reservation, ReservationLine
from wms_stock.models.stock_balance import StockBalance
from wms_stock.models.stock_movement import StockMovement
from wms_stock.models.transfer import Transfer, TransferEvent, TransferLine
from wms_stock.models.warehouse import Warehouse

__all__ = [
    "Adjustment",
    "AdjustmentEvent",
    "AdjustmentLine",
    "DeliveryOrder",
    "DeliveryOrderEvent",
    "DeliveryOrderLine",
    "DeliveryPackage",
    "DocumentNumber",
    "Location",
    "Product",
    "ProductAggregate",
    "Receipt",
    "ReceiptEvent",
    "ReceiptLine",
    "Reservation",
    "ReservationLine",
    "StockBalance",
    "StockMovement",
    "Transfer",
    "TransferEvent",
    "TransferLine",
    "Warehouse",
]
