# shopbridge/services/invoice_repository.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from shopbridge.models.invoice import Invoice, InvoiceStatus
from shopbridge.models.store import Store

log = logging.getLogger("shopbridge.invoices")


class InvoiceCreationError(Exception):
    """创建发票的入参不合法（金额 / 币种）。"""


@dataclass
class InvoiceQuery:
    store_ids: Sequence[str] = field(default_factory=list)
    order_ids: Sequence[str] = field(default_factory=list)
    statuses: Sequence[InvoiceStatus] = field(default_factory=list)


class InvoiceRepository:
    """
    发票存储的薄接口：按店铺 + 订单号查询、创建。

    不负责状态流转（结算由支付后端完成），这里只读和新建。
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_invoices(self, query: InvoiceQuery) -> List[Invoice]:
        """按条件查询，新的在前。"""
        stmt = sa.select(Invoice)
        if query.store_ids:
            stmt = stmt.where(Invoice.store_id.in_(list(query.store_ids)))
        if query.order_ids:
            stmt = stmt.where(Invoice.order_id.in_(list(query.order_ids)))
        if query.statuses:
            stmt = stmt.where(Invoice.status.in_([s.value for s in query.statuses]))
        stmt = stmt.order_by(Invoice.created_at.desc(), Invoice.id)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def create_invoice(
        self,
        store: Store,
        *,
        amount: Any,
        currency: str,
        metadata: Optional[Dict[str, Any]] = None,
        additional_tags: Sequence[str] = (),
    ) -> Invoice:
        try:
            price = Decimal(str(amount))
        except (InvalidOperation, ValueError) as e:
            raise InvoiceCreationError(f"invalid amount: {amount!r}") from e
        if not price.is_finite() or price < 0:
            raise InvoiceCreationError(f"invalid amount: {amount!r}")

        cur = (currency or "").strip().upper()
        if not cur:
            raise InvoiceCreationError("currency is required")

        meta = dict(metadata or {})
        inv = Invoice(
            id=uuid.uuid4().hex,
            store_id=store.id,
            order_id=meta.get("orderId"),
            price=price,
            currency=cur,
            status=InvoiceStatus.NEW.value,
            internal_tags=list(dict.fromkeys(additional_tags)),
            meta=meta,
        )
        self.db.add(inv)
        await self.db.commit()
        await self.db.refresh(inv)

        log.info(
            "invoice created: id=%s store_id=%s order_id=%s price=%s %s",
            inv.id,
            store.id,
            inv.order_id,
            price,
            cur,
        )
        return inv
