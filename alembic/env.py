# alembic/env.py
from __future__ import annotations

import os
from logging.config import fileConfig
from typing import Any

from alembic import context
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

# Alembic 基本配置
config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from shopbridge.db.base import Base, init_models  # noqa: E402
from shopbridge.db.session import normalize_sync_dsn  # noqa: E402


def include_object(
    obj: Any, name: str | None, type_: str, reflected: bool, compare_to: Any
) -> bool:
    """
    DB 里多出来的对象（reflected=True 且 compare_to=None）不参与 diff，避免自动生成 drop。
    """
    if reflected and compare_to is None:
        return False
    return True


def get_url() -> str:
    """
    优先级：
      1. alembic -x db=<url>
      2. SHOPBRIDGE_TEST_DATABASE_URL
      3. DATABASE_URL
      4. alembic.ini 里的 sqlalchemy.url
    """
    url = (
        context.get_x_argument(as_dictionary=True).get("db")
        or os.getenv("SHOPBRIDGE_TEST_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.get_main_option("sqlalchemy.url")
    )
    if not url:
        raise RuntimeError(
            "Alembic 无法确定数据库 URL：请设置 DATABASE_URL，或在 alembic.ini 里配置 sqlalchemy.url"
        )
    return normalize_sync_dsn(url)


def run_migrations_offline() -> None:
    """
    Offline 模式：不真实连库，只生成 SQL。
    """
    init_models()
    context.configure(
        url=get_url(),
        target_metadata=Base.metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """
    Online 模式：真实连库执行迁移。
    """
    init_models()
    url = get_url()
    engine = create_engine(url, poolclass=NullPool, future=True)

    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=Base.metadata,
            compare_type=True,
            include_object=include_object,
            # SQLite 的 ALTER 能力有限，走 batch 模式
            render_as_batch=url.startswith("sqlite"),
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
