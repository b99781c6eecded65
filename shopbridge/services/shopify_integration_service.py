# shopbridge/services/shopify_integration_service.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
from urllib.parse import unquote, urlsplit

from sqlalchemy.ext.asyncio import AsyncSession

from shopbridge.obs.metrics import shopify_script_registrations_total
from shopbridge.services.shopify_client import (
    ShopifyApiClient,
    ShopifyApiError,
    ShopifyClientFactory,
    ShopifyUnavailableError,
)
from shopbridge.services.shopify_integration_errors import (
    IntegrationValidationError,
    ShopifyCredentialsRejected,
    ShopifyPermissionInsufficient,
    ShopifyUnreachable,
)
from shopbridge.services.shopify_types import REQUIRED_SCOPES, ShopifySettings
from shopbridge.services.store_repository import StoreRepository
from shopbridge.utils.keyed_lock import KeyedLock

log = logging.getLogger("shopbridge.shopify.integration")

MSG_INVALID_EXAMPLE_URL = "The provided Example Url was invalid."
MSG_INVALID_CREDENTIALS = "Please provide valid Shopify credentials"
MSG_CREDENTIALS_REJECTED = "Shopify rejected provided credentials, please correct values and try again"
MSG_PERMISSIONS = "Please grant the private app permissions for " + ", ".join(REQUIRED_SCOPES)
MSG_UNREACHABLE = "Shopify could not be reached, please try again later"

_SHOP_SUFFIX_RE = re.compile(r"\.myshopify\.com$", re.IGNORECASE)

# 进程级：同一店铺的启用 / 停用串行执行
_STORE_LOCKS = KeyedLock()


def parse_example_url(example_url: str) -> ShopifySettings:
    """
    从 Shopify 私有应用的示例 URL 中拆出凭据：

        https://{api_key}:{password}@{shop}.myshopify.com/admin/api/{version}/{resource}.json
    """
    try:
        parsed = urlsplit((example_url or "").strip())
        host = parsed.hostname
        username = parsed.username
        password = parsed.password
    except ValueError as e:
        raise IntegrationValidationError(MSG_INVALID_EXAMPLE_URL) from e

    if parsed.scheme not in ("http", "https") or not host or username is None or password is None:
        raise IntegrationValidationError(MSG_INVALID_EXAMPLE_URL)

    return ShopifySettings(
        api_key=unquote(username),
        password=unquote(password),
        shop_name=_SHOP_SUFFIX_RE.sub("", host),
    )


@dataclass(frozen=True)
class ScriptRegistration:
    """
    script tag 注册 / 移除的结果。

    ignored 表示失败但被有意忽略：记录日志，不影响外层启用 / 停用的成功。
    """

    script_id: Optional[str] = None
    ignored_error: Optional[str] = None

    @property
    def ignored(self) -> bool:
        return self.ignored_error is not None

    @classmethod
    def done(cls, script_id: Optional[str] = None) -> "ScriptRegistration":
        return cls(script_id=script_id)

    @classmethod
    def ignore(cls, reason: str) -> "ScriptRegistration":
        return cls(ignored_error=reason)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ShopifyIntegrationService:
    """
    商户 Shopify 凭据的启用 / 停用。

    状态：未配置 ⇄ 已启用（integrated_at 非空）。
    - activate：校验凭据 → 探测 orders/count → 检查权限 → 注册 script tag（失败可忽略）→ 整块写回；
    - deactivate：尽力移除 script tag（失败一律忽略）→ 清空配置 → 整块写回。
    鉴权 / 权限失败直接拒绝且不落库；注册失败只是把 script_id 置空，之后可以手动补。
    """

    def __init__(
        self,
        db: AsyncSession,
        client_factory: ShopifyClientFactory,
        *,
        locks: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.client_factory = client_factory
        self.stores = StoreRepository(db)
        self.locks = locks if locks is not None else _STORE_LOCKS
        self.clock = clock

    async def get_settings(self, store_id: str) -> Optional[ShopifySettings]:
        store = await self.stores.get_store(store_id)
        return self.stores.get_store_blob(store).shopify

    # ------------------------------------------------------------------
    # 启用
    # ------------------------------------------------------------------
    async def activate(
        self, store_id: str, candidate: Optional[ShopifySettings], *, callback_url: str
    ) -> ShopifySettings:
        if candidate is None or not candidate.credentials_populated():
            raise IntegrationValidationError(MSG_INVALID_CREDENTIALS)

        shopify = candidate.model_copy(update={"integrated_at": None, "script_id": None})

        async with self.locks.hold(store_id):
            store = await self.stores.get_store(store_id)
            version = store.blob_version

            client = self.client_factory(shopify.create_shopify_api_credentials())
            await self._verify_credentials(client)
            await self._require_scopes(client)

            registration = await self._register_script(client, callback_url)
            shopify.script_id = registration.script_id
            shopify.integrated_at = self.clock()

            blob = self.stores.get_store_blob(store)
            blob.shopify = shopify
            try:
                await self.stores.update_store_blob(store, blob, expected_version=version)
            except Exception:
                # 配置没写进去：刚注册的 script tag 没有记录，尽力撤掉
                if shopify.script_id:
                    await self._remove_script(client, shopify.script_id)
                raise

        log.info(
            "shopify integration activated: store_id=%s shop=%s script_id=%s",
            store_id,
            shopify.shop_name,
            shopify.script_id,
        )
        return shopify

    async def _verify_credentials(self, client: ShopifyApiClient) -> None:
        try:
            await client.orders_count()
        except ShopifyUnavailableError as e:
            raise ShopifyUnreachable(MSG_UNREACHABLE) from e
        except ShopifyApiError as e:
            raise ShopifyCredentialsRejected(MSG_CREDENTIALS_REJECTED) from e

    async def _require_scopes(self, client: ShopifyApiClient) -> None:
        try:
            granted = set(await client.check_scopes())
        except ShopifyUnavailableError as e:
            raise ShopifyUnreachable(MSG_UNREACHABLE) from e
        except ShopifyApiError as e:
            raise ShopifyPermissionInsufficient(MSG_PERMISSIONS) from e

        missing = [s for s in REQUIRED_SCOPES if s not in granted]
        if missing:
            log.info("shopify scopes missing: %s", missing)
            raise ShopifyPermissionInsufficient(MSG_PERMISSIONS)

    async def _register_script(self, client: ShopifyApiClient, callback_url: str) -> ScriptRegistration:
        try:
            tag = await client.create_script(callback_url)
        except Exception as e:
            log.warning("shopify script registration ignored: %s", e, exc_info=True)
            shopify_script_registrations_total.labels("register", "ignored").inc()
            return ScriptRegistration.ignore(str(e))
        shopify_script_registrations_total.labels("register", "ok").inc()
        return ScriptRegistration.done(str(tag.id))

    # ------------------------------------------------------------------
    # 停用
    # ------------------------------------------------------------------
    async def deactivate(self, store_id: str) -> ScriptRegistration:
        async with self.locks.hold(store_id):
            store = await self.stores.get_store(store_id)
            version = store.blob_version
            blob = self.stores.get_store_blob(store)
            shopify = blob.shopify

            outcome = ScriptRegistration.done()
            if shopify is not None and shopify.integrated and shopify.script_id:
                client = self.client_factory(shopify.create_shopify_api_credentials())
                outcome = await self._remove_script(client, shopify.script_id)

            blob.shopify = None
            await self.stores.update_store_blob(store, blob, expected_version=version)

        log.info("shopify integration cleared: store_id=%s", store_id)
        return outcome

    async def _remove_script(self, client: ShopifyApiClient, script_id: str) -> ScriptRegistration:
        try:
            await client.remove_script(script_id)
        except Exception as e:
            # 远端删不掉不影响停用
            log.warning("shopify script %s removal ignored: %s", script_id, e, exc_info=True)
            shopify_script_registrations_total.labels("remove", "ignored").inc()
            return ScriptRegistration.ignore(str(e))
        shopify_script_registrations_total.labels("remove", "ok").inc()
        return ScriptRegistration.done(script_id)
