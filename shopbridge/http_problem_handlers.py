# shopbridge/http_problem_handlers.py
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from shopbridge.api.problem import ProblemDetail, make_problem
from shopbridge.services.shopify_client import ShopifyApiError
from shopbridge.services.shopify_integration_errors import (
    IntegrationValidationError,
    ShopifyIntegrationError,
    ShopifyUnreachable,
)
from shopbridge.services.store_repository import StoreNotFound, StoreSettingsConflict

logger = logging.getLogger("shopbridge")


def _new_trace_id() -> str:
    return f"t_{uuid.uuid4().hex[:12]}"


def _request_ctx(req: Request) -> Dict[str, Any]:
    return {"path": req.url.path, "method": req.method}


def integration_error_status(exc: ShopifyIntegrationError) -> int:
    """凭据流程错误 → HTTP 状态码。"""
    if isinstance(exc, IntegrationValidationError):
        return 422
    if isinstance(exc, ShopifyUnreachable):
        return 502
    return 400


def _respond(
    req: Request,
    status_code: int,
    error_code: str,
    message: str,
    *,
    details: Optional[List[ProblemDetail]] = None,
    trace_id: Optional[str] = None,
) -> JSONResponse:
    content = make_problem(
        status_code=status_code,
        error_code=error_code,
        message=message,
        context=_request_ctx(req),
        details=details,
        trace_id=trace_id or _new_trace_id(),
    )
    return JSONResponse(status_code=status_code, content=content)


def _problem_from_http_exc(req: Request, exc: HTTPException) -> Dict[str, Any]:
    """
    HTTPException.detail → Problem：
    - raise_problem 产生的 dict：补 trace_id，context 与请求上下文合并（业务字段优先）
    - 其它：当作 state 问题，detail 文本作为 message
    """
    status_code = int(exc.status_code)
    detail = exc.detail

    if isinstance(detail, dict) and "error_code" in detail and "message" in detail:
        out = dict(detail)
        out.setdefault("http_status", status_code)
        out.setdefault("trace_id", _new_trace_id())
        ctx = _request_ctx(req)
        ctx.update(out.get("context") or {})
        out["context"] = ctx
        return out

    msg = str(detail) if detail is not None else "Request rejected"
    return make_problem(
        status_code=status_code,
        error_code="http_error",
        message=msg,
        context=_request_ctx(req),
        details=[{"type": "state", "reason": msg}],
        trace_id=_new_trace_id(),
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(Exception)
    async def _unhandled_exc(req: Request, exc: Exception):
        trace_id = _new_trace_id()
        logger.exception("UNHANDLED_EXC[%s]: %s", trace_id, exc)
        return _respond(
            req, 500, "internal_error", "Internal error, please try again later", trace_id=trace_id
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_exc(req: Request, exc: RequestValidationError):
        details: List[ProblemDetail] = []
        for i, err in enumerate(exc.errors()):
            loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
            details.append(
                {
                    "type": "validation",
                    "path": loc or f"validation[{i}]",
                    "reason": str(err.get("msg") or err.get("type") or "invalid"),
                }
            )
        return _respond(req, 422, "request_validation_error", "Invalid request", details=details)

    @app.exception_handler(HTTPException)
    async def _http_exc(req: Request, exc: HTTPException):
        return JSONResponse(status_code=int(exc.status_code), content=_problem_from_http_exc(req, exc))

    @app.exception_handler(ShopifyIntegrationError)
    async def _integration_exc(req: Request, exc: ShopifyIntegrationError):
        return _respond(req, integration_error_status(exc), exc.error_code, exc.message)

    @app.exception_handler(StoreNotFound)
    async def _store_not_found(req: Request, exc: StoreNotFound):
        return _respond(req, 404, "store_not_found", str(exc))

    @app.exception_handler(StoreSettingsConflict)
    async def _settings_conflict(req: Request, exc: StoreSettingsConflict):
        return _respond(
            req,
            409,
            "store_settings_conflict",
            "Store settings were modified concurrently, please reload and try again",
        )

    @app.exception_handler(ShopifyApiError)
    async def _shopify_exc(req: Request, exc: ShopifyApiError):
        # 对账链路上平台不可用：必须和 404（没有订单）区分开
        trace_id = _new_trace_id()
        logger.warning("SHOPIFY_ERROR[%s]: %s (status=%s)", trace_id, exc, exc.status_code)
        return _respond(
            req,
            502,
            "shopify_unavailable",
            "Shopify is unavailable, please try again later",
            details=[{"type": "remote", "reason": exc.message}],
            trace_id=trace_id,
        )
