# shopbridge/db/session.py
# 统一的异步会话工厂 + FastAPI 依赖（get_session）
from __future__ import annotations

import logging
import re
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shopbridge.core.config import get_settings
from shopbridge.db.base import Base, init_models

log = logging.getLogger("shopbridge.db")


# ---- DSN 归一：把 DSN 统一到 psycopg3 与 aiosqlite ----
def normalize_async_dsn(url: str) -> str:
    url = (url or "").strip()
    # 有些环境会把值写成 '"postgresql+psycopg://..."'，统一剥掉两侧引号
    if (url.startswith('"') and url.endswith('"')) or (url.startswith("'") and url.endswith("'")):
        url = url[1:-1].strip()
    # sqlite:/// → sqlite+aiosqlite:///
    if url.startswith("sqlite:///"):
        return "sqlite+aiosqlite://" + url[len("sqlite:///") - 1 :]
    # postgres/postgresql(+*) → postgresql+psycopg
    if url.startswith("postgresql+asyncpg://") or url.startswith("postgres+asyncpg://"):
        return re.sub(r"^postgres(?:ql)?\+asyncpg://", "postgresql+psycopg://", url)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def normalize_sync_dsn(url: str) -> str:
    """alembic 用：aiosqlite → 标准 sqlite；psycopg3 同步/异步通用。"""
    url = normalize_async_dsn(url)
    if url.startswith("sqlite+aiosqlite://"):
        return "sqlite://" + url[len("sqlite+aiosqlite://") :]
    return url


def _build_engine() -> AsyncEngine:
    settings = get_settings()
    dsn = normalize_async_dsn(settings.DATABASE_URL)
    kwargs = {"echo": settings.SQL_ECHO}
    if dsn.startswith("postgresql"):
        kwargs["pool_pre_ping"] = True
    log.info("[DB] Using DSN (async): %s", re.sub(r"://[^@/]*@", "://***@", dsn))
    return create_async_engine(dsn, **kwargs)


async_engine: AsyncEngine = _build_engine()

AsyncSessionLocal: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---- FastAPI 依赖 ----
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


async def create_all(engine: AsyncEngine | None = None) -> None:
    """dev / 测试：按模型直接建表（生产走 alembic）。"""
    init_models()
    async with (engine or async_engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ---- 关闭引擎（测试/生命周期） ----
async def close_engines() -> None:
    await async_engine.dispose()
