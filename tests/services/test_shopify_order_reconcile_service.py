# tests/services/test_shopify_order_reconcile_service.py
"""
Shopify 订单 → 发票 对账：

场景：
1) 订单 1001 pending、尚无发票 → 新建（New），再 checkOnly 查询返回同一张；
2) 订单 financial_status="paid" → not_found，不建单；
3) 同一订单既有 New 又有已结算 → 返回 New；
4) checkOnly 永远不建单、不调 Shopify；
5) 并发的同一订单请求只建一张发票。
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shopbridge.models.invoice import Invoice, InvoiceStatus
from shopbridge.models.store import Store
from shopbridge.services.shopify_client import ShopifyUnavailableError
from shopbridge.services.shopify_order_reconcile_service import (
    ShopifyOrderReconcileService,
    shopify_order_marker,
)
from shopbridge.utils.keyed_lock import KeyedLock

INTEGRATED_BLOB = {
    "shopify": {
        "api_key": "key123",
        "password": "secret456",
        "shop_name": "my-shop",
        "integrated_at": "2024-01-01T00:00:00+00:00",
        "script_id": "9001",
    }
}


@pytest.fixture
async def integrated_store(session: AsyncSession, store: Store) -> Store:
    store.blob = INTEGRATED_BLOB
    await session.commit()
    await session.refresh(store)
    return store


@pytest.fixture
def svc(session: AsyncSession, fake_shopify) -> ShopifyOrderReconcileService:
    return ShopifyOrderReconcileService(session, fake_shopify.factory, locks=KeyedLock())


async def _seed_invoice(
    session: AsyncSession,
    *,
    invoice_id: str,
    store_id: str,
    order_id: str,
    status: InvoiceStatus,
    age_minutes: int = 0,
    tags=None,
) -> Invoice:
    marker = shopify_order_marker(order_id)
    inv = Invoice(
        id=invoice_id,
        store_id=store_id,
        order_id=marker,
        price=Decimal("10"),
        currency="USD",
        status=status.value,
        internal_tags=list(tags) if tags is not None else [marker],
        meta={"orderId": marker},
        created_at=datetime.now(timezone.utc) - timedelta(minutes=age_minutes),
    )
    session.add(inv)
    await session.commit()
    return inv


async def _count_invoices(session: AsyncSession) -> int:
    return (await session.execute(select(func.count()).select_from(Invoice))).scalar_one()


async def test_pending_order_creates_invoice_then_check_only_returns_it(
    session, integrated_store, svc, fake_shopify
):
    fake_shopify.add_order("1001", financial_status="pending", total_price="25.50", currency="usd")

    created = await svc.reconcile(integrated_store.id, "1001", check_only=False)
    assert created.kind == "found"
    assert created.status == "new"
    assert created.invoice_id

    inv = await session.get(Invoice, created.invoice_id)
    assert inv.price == Decimal("25.50")
    assert inv.currency == "USD"
    assert inv.order_id == "shopify-1001"
    assert inv.internal_tags == ["shopify-1001"]
    assert inv.meta == {"orderId": "shopify-1001"}

    # 凭据来自店铺配置
    assert fake_shopify.credentials_seen[-1].shop_name == "my-shop"
    assert fake_shopify.credentials_seen[-1].api_password == "secret456"

    again = await svc.reconcile(integrated_store.id, "1001", check_only=True)
    assert again == created
    assert await _count_invoices(session) == 1


async def test_repeated_calls_are_idempotent(session, integrated_store, svc, fake_shopify):
    fake_shopify.add_order("1001")

    first = await svc.reconcile(integrated_store.id, "1001")
    second = await svc.reconcile(integrated_store.id, "1001")

    assert first.invoice_id == second.invoice_id
    assert await _count_invoices(session) == 1
    # 第二次直接命中已有发票，不再访问 Shopify
    assert fake_shopify.ops() == ["get_order"]


async def test_paid_order_is_not_found(session, integrated_store, svc, fake_shopify):
    fake_shopify.add_order("1002", financial_status="paid")

    out = await svc.reconcile(integrated_store.id, "1002")

    assert out.kind == "not_found"
    assert await _count_invoices(session) == 0


async def test_unknown_order_is_not_found(session, integrated_store, svc, fake_shopify):
    out = await svc.reconcile(integrated_store.id, "404404")
    assert out.kind == "not_found"
    assert fake_shopify.ops() == ["get_order"]
    assert await _count_invoices(session) == 0


async def test_check_only_never_creates_or_calls_shopify(session, integrated_store, svc, fake_shopify):
    fake_shopify.add_order("1001")

    out = await svc.reconcile(integrated_store.id, "1001", check_only=True)

    assert out.kind == "accepted"
    assert fake_shopify.calls == []
    assert await _count_invoices(session) == 0


async def test_new_invoice_wins_over_settled(session, integrated_store, svc):
    await _seed_invoice(
        session, invoice_id="inv-paid", store_id=integrated_store.id, order_id="1003",
        status=InvoiceStatus.PAID, age_minutes=0,
    )
    await _seed_invoice(
        session, invoice_id="inv-new", store_id=integrated_store.id, order_id="1003",
        status=InvoiceStatus.NEW, age_minutes=10,
    )

    out = await svc.reconcile(integrated_store.id, "1003", check_only=True)

    assert out.kind == "found"
    assert out.invoice_id == "inv-new"
    assert out.status == "new"


async def test_settled_invoice_is_returned(session, integrated_store, svc, fake_shopify):
    await _seed_invoice(
        session, invoice_id="inv-complete", store_id=integrated_store.id, order_id="1004",
        status=InvoiceStatus.COMPLETE,
    )

    out = await svc.reconcile(integrated_store.id, "1004")

    assert out.kind == "found"
    assert out.invoice_id == "inv-complete"
    assert out.status == "complete"
    assert fake_shopify.calls == []


async def test_expired_invoice_does_not_block_new_one(session, integrated_store, svc, fake_shopify):
    await _seed_invoice(
        session, invoice_id="inv-expired", store_id=integrated_store.id, order_id="1005",
        status=InvoiceStatus.EXPIRED,
    )
    fake_shopify.add_order("1005")

    out = await svc.reconcile(integrated_store.id, "1005")

    assert out.kind == "found"
    assert out.invoice_id != "inv-expired"
    assert out.status == "new"
    assert await _count_invoices(session) == 2


async def test_invoice_without_exact_tag_is_ignored(session, integrated_store, svc):
    # order_id 列匹配，但内部标签不是该订单（例如被别处改写过）
    await _seed_invoice(
        session, invoice_id="inv-other", store_id=integrated_store.id, order_id="1006",
        status=InvoiceStatus.NEW, tags=["shopify-10060"],
    )

    out = await svc.reconcile(integrated_store.id, "1006", check_only=True)
    assert out.kind == "accepted"


async def test_invoices_of_other_stores_are_ignored(session, integrated_store, svc):
    other = Store(id="store-2", name="Other store", blob={})
    session.add(other)
    await session.commit()
    await _seed_invoice(
        session, invoice_id="inv-foreign", store_id="store-2", order_id="1007",
        status=InvoiceStatus.NEW,
    )

    out = await svc.reconcile(integrated_store.id, "1007", check_only=True)
    assert out.kind == "accepted"


async def test_not_integrated_store_never_creates(session, store, svc, fake_shopify):
    fake_shopify.add_order("1001")

    out = await svc.reconcile(store.id, "1001")

    assert out.kind == "not_found"
    assert fake_shopify.calls == []
    assert await _count_invoices(session) == 0


async def test_credentials_without_integration_never_create(session, store, svc, fake_shopify):
    store.blob = {"shopify": {"api_key": "k", "password": "p", "shop_name": "s"}}
    await session.commit()
    fake_shopify.add_order("1001")

    out = await svc.reconcile(store.id, "1001")

    assert out.kind == "not_found"
    assert fake_shopify.calls == []


async def test_unknown_store_is_not_found(session, svc, fake_shopify):
    out = await svc.reconcile("no-such-store", "1001")
    assert out.kind == "not_found"
    assert fake_shopify.calls == []


async def test_shopify_unavailable_propagates(session, integrated_store, svc, fake_shopify):
    fake_shopify.errors["get_order"] = ShopifyUnavailableError("Shopify get_order timed out")

    with pytest.raises(ShopifyUnavailableError):
        await svc.reconcile(integrated_store.id, "1001")
    assert await _count_invoices(session) == 0


async def test_concurrent_requests_create_exactly_one_invoice(session, integrated_store, svc, fake_shopify):
    fake_shopify.add_order("1001")

    results = await asyncio.gather(
        svc.reconcile(integrated_store.id, "1001"),
        svc.reconcile(integrated_store.id, "1001"),
        svc.reconcile(integrated_store.id, "1001"),
    )

    assert {r.invoice_id for r in results} == {results[0].invoice_id}
    assert await _count_invoices(session) == 1
    assert fake_shopify.ops() == ["get_order"]
    assert len(svc.locks) == 0


async def test_order_with_different_id_is_not_found(session, integrated_store, svc, fake_shopify):
    # 上游返回的订单 id 与请求不一致（例如路径被宽松解析）
    fake_shopify.orders["1001.json?x="] = fake_shopify.add_order("1001")

    out = await svc.reconcile(integrated_store.id, "1001.json?x=")

    assert out.kind == "not_found"
    assert await _count_invoices(session) == 0
