# shopbridge/limits.py
from __future__ import annotations

import time
from collections import OrderedDict
from typing import Tuple

from fastapi import Request

from shopbridge.api.problem import raise_problem
from shopbridge.core.config import get_settings


class TokenBucket:
    """简单令牌桶：capacity=fill_rate（QPS），按秒补充"""

    def __init__(self, capacity: int, fill_rate: float):
        self.capacity = max(1, int(capacity))
        self.fill_rate = float(fill_rate)
        self.tokens = float(self.capacity)
        self.ts = time.monotonic()

    def allow(self, n: int = 1) -> bool:
        now = time.monotonic()
        self.tokens = min(self.capacity, self.tokens + (now - self.ts) * self.fill_rate)
        self.ts = now
        if self.tokens >= n:
            self.tokens -= n
            return True
        return False


# 进程内桶缓存：每个 (zone, 来源地址) 一个，按最近使用排序
_BUCKETS: "OrderedDict[Tuple[str, str], TokenBucket]" = OrderedDict()

# 来源地址没有上限，桶的数量必须封顶
MAX_BUCKETS = 10_000
# 空闲这么久的桶早已补满，删掉和重建等价
IDLE_TTL_SECONDS = 60.0


def _evict(now: float) -> None:
    """从最久未用的一端淘汰：超出上限的，或空闲超过 IDLE_TTL_SECONDS 的。"""
    while _BUCKETS:
        _, oldest = next(iter(_BUCKETS.items()))
        if len(_BUCKETS) > MAX_BUCKETS or now - oldest.ts > IDLE_TTL_SECONDS:
            _BUCKETS.popitem(last=False)
        else:
            break


def ensure_bucket(zone: str, remote_addr: str, qps: int) -> TokenBucket:
    key = (zone, remote_addr)
    bucket = _BUCKETS.get(key)
    if bucket is None:
        bucket = TokenBucket(capacity=qps, fill_rate=qps)
        _BUCKETS[key] = bucket
        _evict(bucket.ts)
    else:
        _BUCKETS.move_to_end(key)
    return bucket


def reset_buckets() -> None:
    _BUCKETS.clear()


def rate_limit_by_remote_address(zone: str):
    """
    FastAPI 依赖：按来源地址限流，超限返回 429。
    """

    async def _dep(request: Request) -> None:
        qps = get_settings().CALLBACK_RATE_LIMIT_QPS
        if qps <= 0:
            return
        addr = request.client.host if request.client else "unknown"
        if not ensure_bucket(zone, addr, qps).allow():
            raise_problem(
                status_code=429,
                error_code="rate_limited",
                message="Too many requests, please slow down",
                context={"zone": zone},
            )

    return _dep
