# shopbridge/api/problem.py
"""
统一错误响应（Problem）：

    {
      "error_code": "shopify_credentials_rejected",
      "message": "...",            # 直接展示给商户
      "http_status": 400,
      "context": {...},            # store_id / order_id / 回显的表单
      "details": [...],            # 可选：字段级 / 远端原因
      "trace_id": "t_..."
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, NoReturn, Optional, Sequence, TypedDict

from fastapi import HTTPException

ProblemKind = Literal["validation", "state", "remote"]


class ProblemDetail(TypedDict, total=False):
    type: ProblemKind
    # 字段定位，例如 shopify.api_key
    path: str
    reason: str


@dataclass(frozen=True)
class Problem:
    error_code: str
    message: str
    http_status: int
    context: Dict[str, Any] = field(default_factory=dict)
    details: List[ProblemDetail] = field(default_factory=list)
    trace_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
            "http_status": self.http_status,
        }
        # 空字段不输出，保持响应紧凑
        for key in ("context", "details", "trace_id"):
            value = getattr(self, key)
            if value:
                out[key] = value
        return out


def make_problem(
    *,
    status_code: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    details: Optional[Sequence[ProblemDetail]] = None,
    trace_id: Optional[str] = None,
) -> Dict[str, Any]:
    return Problem(
        error_code=str(error_code),
        message=str(message),
        http_status=int(status_code),
        context=dict(context or {}),
        details=list(details or []),
        trace_id=trace_id,
    ).to_dict()


def raise_problem(
    *,
    status_code: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    details: Optional[Sequence[ProblemDetail]] = None,
) -> NoReturn:
    """以 HTTPException 抛出；trace_id 由全局 handler 补齐。"""
    raise HTTPException(
        status_code=int(status_code),
        detail=make_problem(
            status_code=status_code,
            error_code=error_code,
            message=message,
            context=context,
            details=details,
        ),
    )


def raise_404(error_code: str, message: str, *, context: Optional[Dict[str, Any]] = None) -> NoReturn:
    raise_problem(status_code=404, error_code=error_code, message=message, context=context)
