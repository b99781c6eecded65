# shopbridge/api/cors.py
from __future__ import annotations

import re
from typing import Any

from starlette.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send

# 只有 Shopify 店面页面会跨域调用的发票接口：/stores/{store_id}/integrations/{order_id}
INVOICE_PATH_REGEX = r"/stores/[^/]+/integrations/[^/]+"


class PathScopedCORSMiddleware:
    """
    只对匹配 path_regex 的请求启用 CORS；管理接口不带任何 CORS 头。
    """

    def __init__(self, app: ASGIApp, *, path_regex: str, **cors_options: Any) -> None:
        self.app = app
        self.cors = CORSMiddleware(app, **cors_options)
        self.path_re = re.compile(path_regex)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and self.path_re.fullmatch(scope["path"]):
            await self.cors(scope, receive, send)
            return
        await self.app(scope, receive, send)
