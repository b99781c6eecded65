# shopbridge/utils/keyed_lock.py
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable, Tuple


class KeyedLock:
    """
    进程内按 key 互斥的 asyncio 锁。

    同一个 key 的持有者串行执行；key 上没有等待者时自动回收，字典不会无限增长。
    只在单进程内生效，跨进程的并发需要依赖存储层（例如乐观锁版本号）。
    """

    def __init__(self) -> None:
        # key -> (lock, 引用计数)
        self._locks: Dict[Hashable, Tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock, refs = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, refs + 1)
        try:
            async with lock:
                yield
        finally:
            lock, refs = self._locks[key]
            if refs <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, refs - 1)

    def __len__(self) -> int:
        return len(self._locks)
