# shopbridge/api/routers/integrations.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, Response

from shopbridge.api.deps import (
    get_integration_service,
    get_reconcile_service,
    get_script_bundle,
)
from shopbridge.api.problem import raise_404
from shopbridge.api.routers.integrations_helpers import (
    CALLBACK_SCRIPT_ROUTE,
    callback_script_url,
    public_base_url,
    raise_form_problem,
    settings_view,
)
from shopbridge.api.routers.integrations_schemas import (
    IntegrationsCommandIn,
    IntegrationsOut,
    ShopifyInvoiceOut,
)
from shopbridge.limits import rate_limit_by_remote_address
from shopbridge.services.shopify_integration_errors import ShopifyIntegrationError
from shopbridge.services.shopify_integration_service import (
    ShopifyIntegrationService,
    parse_example_url,
)
from shopbridge.services.shopify_order_reconcile_service import ShopifyOrderReconcileService
from shopbridge.services.shopify_script_bundle import ShopifyScriptBundle

router = APIRouter(prefix="/stores", tags=["integrations"])

_shopify_rate_limit = rate_limit_by_remote_address("shopify")

MSG_SAVED = "Shopify integration successfully updated"
MSG_SAVED_NO_SCRIPT = (
    "Shopify integration successfully updated, but the script tag could not be registered; "
    "please add it to your store manually"
)
MSG_CLEARED = "Shopify integration credentials cleared"


# ---------------------------------------------------------------------------
# 1) 匿名：注入 Shopify 订单页的脚本
#    GET /stores/{store_id}/callback-script
# ---------------------------------------------------------------------------
@router.get(
    "/{store_id}/callback-script",
    name=CALLBACK_SCRIPT_ROUTE,
    dependencies=[Depends(_shopify_rate_limit)],
)
async def shopify_callback_script(
    store_id: str,
    request: Request,
    bundle: ShopifyScriptBundle = Depends(get_script_bundle),
) -> Response:
    js = await bundle.render_for_store(base_url=public_base_url(request), store_id=store_id)
    return Response(content=js, media_type="text/javascript")


# ---------------------------------------------------------------------------
# 2) 匿名：Shopify 订单 → 发票
#    GET /stores/{store_id}/integrations/{order_id}?checkOnly=
# ---------------------------------------------------------------------------
@router.get(
    "/{store_id}/integrations/{order_id}",
    dependencies=[Depends(_shopify_rate_limit)],
    responses={404: {"description": "No invoice can be matched to this order"}},
)
async def shopify_invoice_endpoint(
    store_id: str,
    order_id: str,
    check_only: bool = Query(False, alias="checkOnly"),
    svc: ShopifyOrderReconcileService = Depends(get_reconcile_service),
) -> JSONResponse:
    """
    - 已有待支付 / 已结算发票 → {invoiceId, status}
    - checkOnly 且暂无发票 → {}
    - 其余 → 404
    Shopify 不可用时返回 502，与 404 区分。
    """
    outcome = await svc.reconcile(store_id, order_id, check_only=check_only)

    if outcome.kind == "found":
        out = ShopifyInvoiceOut(invoice_id=outcome.invoice_id, status=outcome.status)
        return JSONResponse(content=out.model_dump(by_alias=True))
    if outcome.kind == "accepted":
        return JSONResponse(content={})

    raise_404(
        "shopify_order_not_found",
        "No invoice can be matched to this Shopify order",
        context={"store_id": store_id, "order_id": order_id},
    )


# ---------------------------------------------------------------------------
# 3) 集成配置查看
#    GET /stores/{store_id}/integrations
# ---------------------------------------------------------------------------
@router.get("/{store_id}/integrations", response_model=IntegrationsOut)
async def get_integrations(
    store_id: str,
    request: Request,
    svc: ShopifyIntegrationService = Depends(get_integration_service),
) -> IntegrationsOut:
    shopify = await svc.get_settings(store_id)
    return IntegrationsOut(
        ok=True,
        shopify=settings_view(shopify),
        callback_script_url=callback_script_url(request, store_id),
    )


# ---------------------------------------------------------------------------
# 4) 保存 / 清除凭据
#    POST /stores/{store_id}/integrations
# ---------------------------------------------------------------------------
@router.post("/{store_id}/integrations", response_model=IntegrationsOut)
async def post_integrations(
    store_id: str,
    body: IntegrationsCommandIn,
    request: Request,
    svc: ShopifyIntegrationService = Depends(get_integration_service),
) -> IntegrationsOut:
    command = body.command
    candidate = body.shopify.to_settings() if body.shopify is not None else None
    script_url = callback_script_url(request, store_id)

    example_url = (body.example_url or "").strip()
    if example_url:
        try:
            candidate = parse_example_url(example_url)
        except ShopifyIntegrationError as e:
            raise_form_problem(e, store_id=store_id, form=candidate)
        command = "ShopifySaveCredentials"

    if command == "ShopifySaveCredentials":
        try:
            saved = await svc.activate(store_id, candidate, callback_url=script_url)
        except ShopifyIntegrationError as e:
            raise_form_problem(e, store_id=store_id, form=candidate)
        return IntegrationsOut(
            ok=True,
            message=MSG_SAVED if saved.script_id else MSG_SAVED_NO_SCRIPT,
            shopify=settings_view(saved),
            callback_script_url=script_url,
        )

    if command == "ShopifyClearCredentials":
        await svc.deactivate(store_id)
        return IntegrationsOut(ok=True, message=MSG_CLEARED, shopify=None, callback_script_url=script_url)

    shopify = await svc.get_settings(store_id)
    return IntegrationsOut(ok=True, shopify=settings_view(shopify), callback_script_url=script_url)
