# shopbridge/services/shopify_script_bundle.py
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

log = logging.getLogger("shopbridge.shopify.script")

BUNDLED_FILES = ("bundles/shopify-bundle.min.js",)
UNBUNDLED_FILES = ("modal/checkout-modal.js", "shopify/shopify-checkout.js")


class ShopifyScriptBundle:
    """
    Shopify 订单页注入脚本的进程级缓存。

    - 首次请求时懒加载拼装，asyncio.Lock 保证并发首请求只拼装一次；
    - developing=True 时每次都重新拼装（前端热更新），不写缓存；
    - built_at 记录最近一次拼装时间。
    """

    def __init__(self, static_root: Path, *, bundle: bool = True, developing: bool = False):
        self.static_root = Path(static_root)
        self.bundle = bundle
        self.developing = developing
        self._content: Optional[str] = None
        self.built_at: Optional[datetime] = None
        self._lock = asyncio.Lock()

    @property
    def files(self) -> Sequence[str]:
        return BUNDLED_FILES if self.bundle else UNBUNDLED_FILES

    def _assemble(self) -> str:
        parts = []
        for rel in self.files:
            path = self.static_root / rel
            parts.append("\n" + path.read_text(encoding="utf-8"))
        return "".join(parts)

    async def get_javascript(self) -> str:
        if self.developing:
            return await asyncio.to_thread(self._assemble)

        if self._content is not None:
            return self._content

        async with self._lock:
            if self._content is None:
                content = await asyncio.to_thread(self._assemble)
                self._content = content
                self.built_at = datetime.now(timezone.utc)
                log.info("shopify script bundle built (%d bytes, files=%s)", len(content), list(self.files))
        return self._content

    def invalidate(self) -> None:
        self._content = None
        self.built_at = None

    async def render_for_store(self, *, base_url: str, store_id: str) -> str:
        """前置注入服务根地址与 STORE_ID，再拼接脚本正文。"""
        js = await self.get_javascript()
        return (
            f"var SHOPBRIDGE_URL = {json.dumps(base_url)}; "
            f"var STORE_ID = {json.dumps(store_id)}; {js}"
        )
