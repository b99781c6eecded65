from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from shopbridge.db.base import Base


class Store(Base):
    """
    商户（店铺）档案。

    blob 是整块的配置文档（JSON），各集成在其中占一个命名空间（例如 "shopify"）。
    blob_version 是乐观锁版本号：每次整块替换 blob 时 +1，写入时做 compare-and-swap。
    """

    __tablename__ = "stores"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    name: Mapped[str] = mapped_column(sa.String(256), nullable=False, default="NO-STORE")

    blob: Mapped[Dict[str, Any]] = mapped_column(sa.JSON, nullable=False, default=dict)
    blob_version: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0, server_default=sa.text("0")
    )

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        onupdate=sa.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Store id={self.id!r} name={self.name!r} blob_version={self.blob_version}>"
