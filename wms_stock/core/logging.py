# wms_stock/core/logging.py
import logging
import sys
from contextvars import ContextVar
from typing import Optional

# 当前请求 / 任务的操作人（X-Actor-Id）；未绑定时输出 "-"
_actor_var: ContextVar[Optional[int]] = ContextVar("wms_stock_actor", default=None)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [actor=%(actor)s] %(message)s"


def bind_actor(actor_id: Optional[int]) -> None:
    """把操作人绑到当前上下文，之后本请求内的每条日志都带 actor"""
    _actor_var.set(actor_id)


class ActorContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        actor = _actor_var.get()
        record.actor = "-" if actor is None else actor
        return True


def setup_logging(level: str = "INFO", *, sql_echo: bool = False) -> None:
    """
    统一日志：
    - 根 logger 设级别，单一 stdout handler（重复调用不叠加）
    - 每条记录带 [actor=…]：台账 / 终态动作 / 预留事件可按操作人追溯
    - SQL 日志只在 DEBUG 或 SQL_ECHO 时打开
    """
    level = level.upper()
    root = logging.getLogger()
    root.setLevel(level)

    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(ActorContextFilter())
    root.addHandler(handler)

    logging.getLogger("wms_stock").setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if (level == "DEBUG" or sql_echo) else logging.WARNING
    )
