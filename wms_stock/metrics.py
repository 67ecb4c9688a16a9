# wms_stock/metrics.py
from __future__ import annotations

import os

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    generate_latest,
    multiprocess,
)

# 台账过账条数（按 transaction_type）
LEDGER_POSTINGS = Counter(
    "stock_ledger_postings_total", "Ledger entries posted", ["transaction_type"]
)
# 终态动作（validate/execute/apply/reverse）结果：ok / replay / error
TERMINAL_ACTIONS = Counter(
    "stock_terminal_actions_total", "Document terminal actions", ["document", "outcome"]
)
# 预留生命周期：reserved / replay / rejected / released / expired
RESERVATION_EVENTS = Counter(
    "stock_reservation_events_total", "Reservation lifecycle events", ["event"]
)

router = APIRouter()


@router.get("/metrics")
def metrics() -> Response:
    """
    单进程：直接导出默认 REGISTRY；
    多进程（PROMETHEUS_MULTIPROC_DIR 已设置）：临时 CollectorRegistry 合并各分片。
    """
    if os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        payload = generate_latest(registry)
    else:
        payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
