# shopbridge/api/deps.py
from __future__ import annotations

from functools import lru_cache
from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shopbridge.core.config import get_settings
from shopbridge.db.session import get_session as _get_session
from shopbridge.services.shopify_client import ShopifyClientFactory, make_client_factory
from shopbridge.services.shopify_integration_service import ShopifyIntegrationService
from shopbridge.services.shopify_order_reconcile_service import ShopifyOrderReconcileService
from shopbridge.services.shopify_script_bundle import ShopifyScriptBundle


# ---------------------------
# 异步 Session 依赖（业务用）
# ---------------------------
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async for session in _get_session():
        yield session


# ---------------------------
# Shopify 相关依赖（测试里通过 dependency_overrides 替换）
# ---------------------------
@lru_cache
def get_shopify_client_factory() -> ShopifyClientFactory:
    settings = get_settings()
    return make_client_factory(
        api_version=settings.SHOPIFY_API_VERSION,
        timeout=settings.SHOPIFY_HTTP_TIMEOUT,
    )


@lru_cache
def get_script_bundle() -> ShopifyScriptBundle:
    settings = get_settings()
    return ShopifyScriptBundle(
        settings.STATIC_ROOT,
        bundle=settings.BUNDLE_JS_CSS,
        developing=settings.DEVELOPING,
    )


async def get_reconcile_service(
    session: AsyncSession = Depends(get_session),
    client_factory: ShopifyClientFactory = Depends(get_shopify_client_factory),
) -> ShopifyOrderReconcileService:
    return ShopifyOrderReconcileService(session, client_factory)


async def get_integration_service(
    session: AsyncSession = Depends(get_session),
    client_factory: ShopifyClientFactory = Depends(get_shopify_client_factory),
) -> ShopifyIntegrationService:
    return ShopifyIntegrationService(session, client_factory)


__all__ = (
    "get_session",
    "get_shopify_client_factory",
    "get_script_bundle",
    "get_reconcile_service",
    "get_integration_service",
)
