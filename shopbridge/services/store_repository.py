# shopbridge/services/store_repository.py
from __future__ import annotations

from typing import Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from shopbridge.models.store import Store
from shopbridge.services.shopify_types import StoreBlob


class StoreNotFound(Exception):
    """指定 store 不存在。"""


class StoreSettingsConflict(Exception):
    """blob 写入时版本号已变化（并发编辑），本次写入未生效。"""


class StoreRepository:
    """
    店铺档案读取 + blob 整块替换。

    update_store_blob 以 blob_version 做 compare-and-swap：
    读到的版本与库里不一致时抛 StoreSettingsConflict，不会覆盖别人的改动。
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_store(self, store_id: str) -> Optional[Store]:
        # populate_existing：同一 session 内多次读取时拿到最新的 blob / 版本号
        result = await self.db.execute(
            sa.select(Store)
            .where(Store.id == store_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_store(self, store_id: str) -> Store:
        store = await self.find_store(store_id)
        if store is None:
            raise StoreNotFound(f"store_id={store_id} 不存在")
        return store

    @staticmethod
    def get_store_blob(store: Store) -> StoreBlob:
        return StoreBlob.from_raw(store.blob)

    async def update_store_blob(self, store: Store, blob: StoreBlob, *, expected_version: int) -> bool:
        """
        整块替换 blob。内容没变化时不写库，返回 False；写入成功返回 True。
        """
        raw = blob.to_raw()
        if raw == (store.blob or {}):
            return False

        # rollback 会让 store 过期，之后不能再读它的属性
        store_id = store.id
        result = await self.db.execute(
            sa.update(Store)
            .where(Store.id == store_id, Store.blob_version == expected_version)
            .values(blob=raw, blob_version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise StoreSettingsConflict(
                f"store_id={store_id} 配置已被其他会话修改（expected_version={expected_version}）"
            )
        await self.db.commit()
        await self.db.refresh(store)
        return True
