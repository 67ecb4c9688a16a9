# wms_stock/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from wms_stock import __version__
from wms_stock.core.config import get_settings
from wms_stock.core.logging import setup_logging
from wms_stock.db.base import init_models
from wms_stock.db.session import close_engines
from wms_stock.http_problem_handlers import register_exception_handlers

logger = logging.getLogger("wms_stock")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, sql_echo=settings.SQL_ECHO)
    init_models()
    logger.info("wms_stock started: env=%s", settings.ENV)
    yield
    await close_engines()


app = FastAPI(
    title="WMS Stock",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://127.0.0.1:8000",
        "http://localhost:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# ===========================
#        单据流程
# ===========================
from wms_stock.api.routers.adjustments import router as adjustments_router  # noqa: E402
from wms_stock.api.routers.delivery_orders import router as delivery_orders_router  # noqa: E402
from wms_stock.api.routers.receipts import router as receipts_router  # noqa: E402
from wms_stock.api.routers.transfers import router as transfers_router  # noqa: E402

# ===========================
#     库存 / 预留 / 台账
# ===========================
from wms_stock.api.routers.ledger import router as ledger_router  # noqa: E402
from wms_stock.api.routers.reservations import router as reservations_router  # noqa: E402
from wms_stock.api.routers.stock import router as stock_router  # noqa: E402
from wms_stock.metrics import router as metrics_router  # noqa: E402

app.include_router(receipts_router)
app.include_router(delivery_orders_router)
app.include_router(transfers_router)
app.include_router(adjustments_router)
# /stock/reserve 等固定路径要先于 /stock/{product_id}
app.include_router(reservations_router)
app.include_router(stock_router)
app.include_router(ledger_router)
app.include_router(metrics_router)


@app.get("/")
async def root():
    return {"name": "WMS Stock", "version": __version__}


@app.get("/ping")
async def ping():
    return {"status": "ok"}


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}
