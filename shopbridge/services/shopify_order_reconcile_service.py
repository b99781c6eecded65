# shopbridge/services/shopify_order_reconcile_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from shopbridge.models.invoice import Invoice, InvoiceStatus, SETTLED_STATUSES
from shopbridge.obs.metrics import shopify_invoices_created_total
from shopbridge.services.invoice_repository import InvoiceQuery, InvoiceRepository
from shopbridge.services.shopify_client import ShopifyClientFactory
from shopbridge.services.store_repository import StoreRepository
from shopbridge.utils.keyed_lock import KeyedLock

log = logging.getLogger("shopbridge.shopify.reconcile")

SHOPIFY_ORDER_ID_PREFIX = "shopify-"

# 进程级：同一 (store_id, order_id) 的查找 + 创建串行执行
_ORDER_LOCKS = KeyedLock()


@dataclass(frozen=True)
class ShopifyInvoiceOutcome:
    """
    对账结果：

    - kind="found"    → 命中 / 新建的发票（invoice_id + 小写状态）
    - kind="accepted" → checkOnly 且暂无发票
    - kind="not_found"→ 没有可对应的订单
    """

    kind: str
    invoice_id: Optional[str] = None
    status: Optional[str] = None

    @classmethod
    def found(cls, invoice: Invoice) -> "ShopifyInvoiceOutcome":
        return cls(kind="found", invoice_id=invoice.id, status=invoice.status.lower())

    @classmethod
    def accepted(cls) -> "ShopifyInvoiceOutcome":
        return cls(kind="accepted")

    @classmethod
    def not_found(cls) -> "ShopifyInvoiceOutcome":
        return cls(kind="not_found")


def shopify_order_marker(order_id: str) -> str:
    return f"{SHOPIFY_ORDER_ID_PREFIX}{order_id}"


class ShopifyOrderReconcileService:
    """
    Shopify 订单 → 发票 对账。

    同一店铺同一 Shopify 订单最多只有一张“有效”发票：
    先查已有发票（待支付优先，其次已结算），都没有才去 Shopify 确认订单仍是 pending 再新建。
    步骤顺序是正确性的一部分，不要调整。
    """

    def __init__(
        self,
        db: AsyncSession,
        client_factory: ShopifyClientFactory,
        *,
        locks: Optional[KeyedLock] = None,
    ):
        self.db = db
        self.client_factory = client_factory
        self.invoices = InvoiceRepository(db)
        self.stores = StoreRepository(db)
        self.locks = locks if locks is not None else _ORDER_LOCKS

    async def reconcile(
        self, store_id: str, order_id: str, *, check_only: bool = False
    ) -> ShopifyInvoiceOutcome:
        async with self.locks.hold((store_id, order_id)):
            return await self._reconcile(store_id, order_id, check_only=check_only)

    async def find_matching_invoices(self, store_id: str, order_id: str) -> List[Invoice]:
        marker = shopify_order_marker(order_id)
        candidates = await self.invoices.get_invoices(
            InvoiceQuery(store_ids=[store_id], order_ids=[marker])
        )
        # 防前缀碰撞：必须在内部标签里精确出现该订单号
        return [
            inv
            for inv in candidates
            if order_id in inv.get_internal_tags(SHOPIFY_ORDER_ID_PREFIX)
        ]

    async def _reconcile(
        self, store_id: str, order_id: str, *, check_only: bool
    ) -> ShopifyInvoiceOutcome:
        marker = shopify_order_marker(order_id)
        matched = await self.find_matching_invoices(store_id, order_id)

        # 1) 仍在等待支付的发票优先
        pending = next((inv for inv in matched if inv.status == InvoiceStatus.NEW.value), None)
        if pending is not None:
            return ShopifyInvoiceOutcome.found(pending)

        # 2) 已结算
        settled = next(
            (inv for inv in matched if inv.status in {s.value for s in SETTLED_STATUSES}),
            None,
        )
        if settled is not None:
            return ShopifyInvoiceOutcome.found(settled)

        # 3) 只查询，不产生副作用
        if check_only:
            return ShopifyInvoiceOutcome.accepted()

        # 4) 未集成的店铺不建单
        store = await self.stores.find_store(store_id)
        if store is None:
            return ShopifyInvoiceOutcome.not_found()
        shopify = self.stores.get_store_blob(store).shopify
        if shopify is None or not shopify.integrated:
            return ShopifyInvoiceOutcome.not_found()

        # 5) 订单必须存在、id 与请求一致且仍为 pending；平台不可用时异常直接上抛
        client = self.client_factory(shopify.create_shopify_api_credentials())
        order = await client.get_order(order_id)
        if order is None or order.id != order_id or order.financial_status != "pending":
            return ShopifyInvoiceOutcome.not_found()

        # 6) 新建发票
        invoice = await self.invoices.create_invoice(
            store,
            amount=order.total_price,
            currency=order.currency or "",
            metadata={"orderId": marker},
            additional_tags=[marker],
        )
        shopify_invoices_created_total.inc()
        log.info(
            "shopify order %s -> invoice %s (store_id=%s)", order_id, invoice.id, store_id
        )
        return ShopifyInvoiceOutcome.found(invoice)
