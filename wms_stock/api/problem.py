# wms_stock/api/problem.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from wms_stock.services.stock_errors import StockError


@dataclass(frozen=True)
class Problem:
    error_code: str
    message: str
    http_status: int
    context: Optional[Dict[str, Any]] = None
    details: Optional[List[Dict[str, Any]]] = None
    trace_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
            "http_status": int(self.http_status),
        }
        if self.context:
            out["context"] = self.context
        if self.details:
            out["details"] = self.details
        if self.trace_id:
            out["trace_id"] = self.trace_id
        return out


def make_problem(
    *,
    status_code: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    details: Optional[Sequence[Dict[str, Any]]] = None,
    trace_id: Optional[str] = None,
) -> Dict[str, Any]:
    p = Problem(
        error_code=str(error_code),
        message=str(message),
        http_status=int(status_code),
        context=context,
        details=list(details) if details else None,
        trace_id=trace_id,
    )
    return p.to_dict()


def problem_from_stock_error(
    exc: StockError, *, context: Optional[Dict[str, Any]] = None, trace_id: Optional[str] = None
) -> Dict[str, Any]:
    """StockError → Problem（请求上下文在前，业务 context 覆盖）"""
    ctx: Dict[str, Any] = dict(context or {})
    ctx.update(exc.context)
    return make_problem(
        status_code=exc.http_status,
        error_code=exc.code,
        message=exc.message,
        context=ctx,
        details=exc.details,
        trace_id=trace_id,
    )
