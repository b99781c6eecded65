# tests/conftest.py
from __future__ import annotations

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# ============================================================
# 在 import shopbridge.main 之前固定测试环境：
# 内存库、不自动建表、关闭 .env 里的限流配置
# ============================================================
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["AUTO_CREATE_TABLES"] = "0"
os.environ["CALLBACK_RATE_LIMIT_QPS"] = "0"

from shopbridge.api.deps import (  # noqa: E402
    get_script_bundle,
    get_session,
    get_shopify_client_factory,
)
from shopbridge.core.config import get_settings  # noqa: E402
from shopbridge.db.session import create_all  # noqa: E402
from shopbridge.limits import reset_buckets  # noqa: E402
from shopbridge.main import app  # noqa: E402
from shopbridge.models.store import Store  # noqa: E402
from tests.helpers.fake_shopify import FakeShopify  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite://"


# =========================================
# 每用例独立的内存库（StaticPool：所有会话共用同一连接）
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    await create_all(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(async_session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as sess:
        yield sess


@pytest_asyncio.fixture(scope="function")
async def store(session: AsyncSession) -> Store:
    """
    一个尚未配置任何集成的店铺。
    """
    s = Store(id="store-1", name="Test store", blob={})
    session.add(s)
    await session.commit()
    await session.refresh(s)
    return s


@pytest.fixture(scope="function")
def fake_shopify() -> FakeShopify:
    return FakeShopify()


@pytest.fixture(autouse=True)
def _reset_process_state():
    """
    进程级单例（配置 / 脚本缓存 / 限流桶）每个用例重新来过。
    """
    get_settings.cache_clear()
    get_script_bundle.cache_clear()
    reset_buckets()
    yield
    get_settings.cache_clear()
    get_script_bundle.cache_clear()
    reset_buckets()


@pytest_asyncio.fixture(scope="function")
async def async_client(async_session_maker, fake_shopify: FakeShopify) -> AsyncGenerator[AsyncClient, None]:
    """
    基于 FastAPI app 的 AsyncClient：

    - get_session 指向本用例的内存库；
    - Shopify 客户端工厂替换成 FakeShopify，不出网。
    """

    async def _session_override() -> AsyncGenerator[AsyncSession, None]:
        async with async_session_maker() as sess:
            yield sess

    app.dependency_overrides[get_session] = _session_override
    app.dependency_overrides[get_shopify_client_factory] = lambda: fake_shopify.factory

    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
    finally:
        app.dependency_overrides.clear()
