# shopbridge/api/routers/integrations_helpers.py
from __future__ import annotations

from typing import Any, Dict, NoReturn, Optional

from fastapi import Request

from shopbridge.api.problem import raise_problem
from shopbridge.api.routers.integrations_schemas import ShopifySettingsView
from shopbridge.core.config import get_settings
from shopbridge.http_problem_handlers import integration_error_status
from shopbridge.services.shopify_integration_errors import ShopifyIntegrationError
from shopbridge.services.shopify_types import ShopifySettings

CALLBACK_SCRIPT_ROUTE = "shopify_callback_script"


def mask(token: Optional[str], keep: int = 4) -> str:
    """
    展示时对密钥做脱敏。
    """
    if not token:
        return ""
    if len(token) <= keep:
        return "*" * len(token)
    return token[:keep] + "..."


def settings_view(shopify: Optional[ShopifySettings]) -> Optional[ShopifySettingsView]:
    if shopify is None:
        return None
    return ShopifySettingsView(
        shop_name=shopify.shop_name,
        api_key=shopify.api_key,
        password_preview=mask(shopify.password),
        integrated=shopify.integrated,
        integrated_at=shopify.integrated_at,
        script_id=shopify.script_id,
    )


def public_base_url(request: Request) -> str:
    """服务对外根地址（以 / 结尾）。"""
    base = get_settings().PUBLIC_BASE_URL or str(request.base_url)
    return base.rstrip("/") + "/"


def callback_script_url(request: Request, store_id: str) -> str:
    """
    商户维度、确定性的回调脚本地址（注册到 Shopify script tag 的 src）。
    """
    path = request.app.url_path_for(CALLBACK_SCRIPT_ROUTE, store_id=store_id)
    return public_base_url(request) + str(path).lstrip("/")


def raise_form_problem(
    exc: ShopifyIntegrationError, *, store_id: str, form: Optional[ShopifySettings]
) -> NoReturn:
    """
    凭据流程失败：带回（脱敏后的）表单内容，前端原样回显；此时没有任何状态被修改。
    """
    context: Dict[str, Any] = {"store_id": store_id}
    view = settings_view(form)
    if view is not None:
        context["form"] = view.model_dump(mode="json", include={"shop_name", "api_key", "password_preview"})
    raise_problem(
        status_code=integration_error_status(exc),
        error_code=exc.error_code,
        message=exc.message,
        context=context,
    )
