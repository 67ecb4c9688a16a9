# wms_stock/services/stock_errors.py
from __future__ import annotations

from typing import Any, Dict, List, Optional


class StockError(Exception):
    """库存引擎业务异常基类：code / message / http_status / context"""

    code = "STOCK_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        http_status: int | None = None,
        context: Optional[Dict[str, Any]] = None,
        details: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message)
        if code:
            self.code = code
        if http_status:
            self.http_status = http_status
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})
        self.details: List[Dict[str, Any]] = list(details or [])


class NotFound(StockError):
    """实体不存在或已软删"""

    code = "NOT_FOUND"
    http_status = 404


class InvalidState(StockError):
    """单据状态不允许该动作"""

    code = "INVALID_STATE"

    def __init__(self, message: str, *, current: str, required: List[str] | str, **kw: Any):
        req = [required] if isinstance(required, str) else list(required)
        ctx = dict(kw.pop("context", None) or {})
        ctx.update({"current_status": current, "required_status": req})
        super().__init__(message, context=ctx, **kw)
        self.current = current
        self.required = req


class InsufficientStock(StockError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, message: str, *, requested: int, available: int, **kw: Any):
        ctx = dict(kw.pop("context", None) or {})
        ctx.update({"requested": int(requested), "available": int(available)})
        super().__init__(message, context=ctx, **kw)
        self.requested = int(requested)
        self.available = int(available)


class NegativeBalance(StockError):
    code = "NEGATIVE_BALANCE"


class OverReservation(StockError):
    code = "OVER_RESERVATION"


class ValidationFailed(StockError):
    """输入不合法（业务层校验）"""

    code = "VALIDATION_ERROR"


class Conflict(StockError):
    code = "CONFLICT"
    http_status = 409


class PermissionDenied(StockError):
    code = "PERMISSION_DENIED"
    http_status = 403


class NoStockReservable(StockError):
    """没有任何一行可以完整预留；details 为逐行错误"""

    code = "NO_STOCK_RESERVABLE"
