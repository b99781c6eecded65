# shopbridge/services/shopify_client.py
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

import httpx

from shopbridge.obs.metrics import shopify_api_errors_total
from shopbridge.services.shopify_types import (
    ShopifyApiCredentials,
    ShopifyOrder,
    ShopifyScriptTag,
)

log = logging.getLogger("shopbridge.shopify")

DEFAULT_API_VERSION = "2023-10"
DEFAULT_TIMEOUT = 10.0


class ShopifyApiError(Exception):
    """Shopify 返回非 2xx（或无法理解的响应）。"""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ShopifyAuthError(ShopifyApiError):
    """401 / 403：凭据被拒或权限不足。"""


class ShopifyUnavailableError(ShopifyApiError):
    """网络错误 / 超时 / 429 / 5xx / 响应不是 JSON。"""


def _segment(value: str) -> str:
    """单个 URL 路径段：/ ? # 等全部转义，外部传入的 id 不能改写请求路径。"""
    return quote(str(value), safe="")


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    errors = body.get("errors") if isinstance(body, dict) else None
    if errors is None:
        return resp.reason_phrase
    if isinstance(errors, str):
        return errors
    return json.dumps(errors, ensure_ascii=False)


class ShopifyApiClient:
    """
    Shopify Admin REST 客户端（私有应用 Basic 认证）。

    - 凭据绑定在实例上，每次调用新建 httpx.AsyncClient，不在商户之间共享会话；
    - 所有调用都带超时，超时按 ShopifyUnavailableError 抛出；
    - transport 仅用于测试注入（httpx.MockTransport）。
    """

    def __init__(
        self,
        credentials: ShopifyApiCredentials,
        *,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials
        self.api_version = api_version
        self.timeout = timeout
        self._transport = transport

    @property
    def admin_root(self) -> str:
        return f"https://{self.credentials.host}/admin"

    @property
    def api_root(self) -> str:
        return f"{self.admin_root}/api/{self.api_version}"

    async def _send(
        self,
        op: str,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        allow_404: bool = False,
    ) -> Optional[Dict[str, Any]]:
        auth = httpx.BasicAuth(self.credentials.api_key, self.credentials.api_password)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, auth=auth, transport=self._transport
            ) as client:
                resp = await client.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers={"Accept": "application/json"},
                )
        except httpx.TimeoutException as e:
            shopify_api_errors_total.labels(op).inc()
            raise ShopifyUnavailableError(f"Shopify {op} timed out") from e
        except httpx.HTTPError as e:
            shopify_api_errors_total.labels(op).inc()
            raise ShopifyUnavailableError(f"Shopify {op} failed: {e}") from e

        if resp.status_code == 404 and allow_404:
            return None

        if resp.status_code >= 400:
            shopify_api_errors_total.labels(op).inc()
            msg = _error_message(resp)
            log.debug("shopify %s -> %s %s", op, resp.status_code, msg)
            if resp.status_code in (401, 403):
                raise ShopifyAuthError(msg, status_code=resp.status_code)
            if resp.status_code == 429 or resp.status_code >= 500:
                raise ShopifyUnavailableError(msg, status_code=resp.status_code)
            raise ShopifyApiError(msg, status_code=resp.status_code)

        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            shopify_api_errors_total.labels(op).inc()
            raise ShopifyUnavailableError(
                f"Shopify {op} returned a malformed response", status_code=resp.status_code
            ) from e
        if not isinstance(data, dict):
            shopify_api_errors_total.labels(op).inc()
            raise ShopifyUnavailableError(
                f"Shopify {op} returned a malformed response", status_code=resp.status_code
            )
        return data

    # ---------- 订单 ----------

    async def get_order(self, order_id: str) -> Optional[ShopifyOrder]:
        data = await self._send(
            "get_order",
            "GET",
            f"{self.api_root}/orders/{_segment(order_id)}.json",
            params={"fields": "id,total_price,currency,financial_status"},
            allow_404=True,
        )
        if not data or not isinstance(data.get("order"), dict):
            return None
        return ShopifyOrder.model_validate(data["order"])

    async def orders_count(self) -> int:
        data = await self._send("orders_count", "GET", f"{self.api_root}/orders/count.json")
        try:
            return int(data["count"])
        except (KeyError, TypeError, ValueError) as e:
            raise ShopifyUnavailableError("Shopify orders_count returned a malformed response") from e

    # ---------- 权限 ----------

    async def check_scopes(self) -> List[str]:
        data = await self._send(
            "check_scopes", "GET", f"{self.admin_root}/oauth/access_scopes.json"
        )
        scopes = data.get("access_scopes") or []
        return [s["handle"] for s in scopes if isinstance(s, dict) and s.get("handle")]

    # ---------- script tag ----------

    async def create_script(
        self,
        src: str,
        *,
        event: str = "onload",
        display_scope: str = "order_status",
    ) -> ShopifyScriptTag:
        data = await self._send(
            "create_script",
            "POST",
            f"{self.api_root}/script_tags.json",
            json_body={"script_tag": {"event": event, "src": src, "display_scope": display_scope}},
        )
        tag = data.get("script_tag")
        if not isinstance(tag, dict):
            raise ShopifyUnavailableError("Shopify create_script returned a malformed response")
        return ShopifyScriptTag.model_validate(tag)

    async def remove_script(self, script_id: str) -> None:
        await self._send(
            "remove_script", "DELETE", f"{self.api_root}/script_tags/{_segment(script_id)}.json"
        )


ShopifyClientFactory = Callable[[ShopifyApiCredentials], ShopifyApiClient]


def make_client_factory(
    *,
    api_version: str = DEFAULT_API_VERSION,
    timeout: float = DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ShopifyClientFactory:
    """按统一配置生产 ShopifyApiClient（每次调用方各自持有凭据）。"""

    def _factory(credentials: ShopifyApiCredentials) -> ShopifyApiClient:
        return ShopifyApiClient(
            credentials, api_version=api_version, timeout=timeout, transport=transport
        )

    return _factory
