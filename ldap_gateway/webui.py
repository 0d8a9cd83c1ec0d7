from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


def api_result(code: int, message: str, data: Any, trace_id: str = "") -> dict:
    """Unified API result shape.

    Format:
      {"code": int, "message": str, "data": Any, "trace_id": str}
    """

    return {
        "code": int(code),
        "message": str(message or ""),
        "data": data,
        "trace_id": str(trace_id or ""),
    }


def json_with_trace_id(request: Request, status_code: int, code: int, message: str, data: Any = None) -> JSONResponse:
    trace_id = getattr(request.state, "trace_id", "")
    return JSONResponse(api_result(code, message, data, trace_id), status_code=status_code)
