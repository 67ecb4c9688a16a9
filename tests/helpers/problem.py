# tests/helpers/problem.py
from __future__ import annotations

from typing import Any, Dict

import httpx


def assert_problem(resp: httpx.Response, status: int, error_code: str) -> Dict[str, Any]:
    """断言响应为 Problem 形状，返回解析后的 body"""
    assert resp.status_code == status, resp.text
    body = resp.json()
    assert body["error_code"] == error_code, body
    assert body["http_status"] == status
    assert body["message"]
    assert body["trace_id"].startswith("t_")
    return body
