# shopbridge/models/invoice.py
from __future__ import annotations

import enum
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from shopbridge.db.base import Base


class InvoiceStatus(str, enum.Enum):
    NEW = "New"
    PAID = "Paid"
    CONFIRMED = "Confirmed"
    COMPLETE = "Complete"
    EXPIRED = "Expired"
    INVALID = "Invalid"


# 已收款（最终或接近最终）
SETTLED_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.COMPLETE, InvoiceStatus.CONFIRMED})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Invoice(Base):
    """
    支付发票。

    - order_id：对外可查询的订单号（Shopify 订单落在这里的是完整 marker tag）；
    - internal_tags：内部关联标签列表，按前缀区分来源（如 "shopify-1001"）；
    - meta：创建时的元数据文档（列名 metadata）。
    """

    __tablename__ = "invoices"
    __table_args__ = (sa.Index("ix_invoices_store_order", "store_id", "order_id"),)

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    store_id: Mapped[str] = mapped_column(
        sa.String(64),
        sa.ForeignKey("stores.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    order_id: Mapped[str | None] = mapped_column(sa.String(256), nullable=True)

    price: Mapped[Decimal] = mapped_column(sa.Numeric(28, 8), nullable=False)
    currency: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    status: Mapped[str] = mapped_column(
        sa.String(16), nullable=False, default=InvoiceStatus.NEW.value
    )

    internal_tags: Mapped[List[str]] = mapped_column(sa.JSON, nullable=False, default=list)
    meta: Mapped[Dict[str, Any]] = mapped_column("metadata", sa.JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )

    @property
    def invoice_status(self) -> InvoiceStatus:
        return InvoiceStatus(self.status)

    def get_internal_tags(self, prefix: str) -> List[str]:
        """返回以 prefix 开头的内部标签，去掉前缀。"""
        return [t[len(prefix) :] for t in (self.internal_tags or []) if t.startswith(prefix)]

    def __repr__(self) -> str:
        return (
            f"<Invoice id={self.id} store_id={self.store_id} "
            f"order_id={self.order_id!r} status={self.status}>"
        )
