# shopbridge/db/base.py
from __future__ import annotations

import importlib
import logging
from typing import Iterable, List, Set

from sqlalchemy.orm import DeclarativeBase, configure_mappers

log = logging.getLogger("shopbridge.models")


class Base(DeclarativeBase):
    """全局唯一 ORM Base"""

    pass


_INITIALIZED: bool = False  # 防重复初始化

_MODEL_MODULES = [
    "shopbridge.models.store",
    "shopbridge.models.invoice",
]


def init_models(*, exclude: Iterable[str] | None = None, force: bool = False) -> None:
    """
    集中导入模型 + 固化关系映射（alembic / create_all 之前调用）。
    """
    global _INITIALIZED
    if _INITIALIZED and not force:
        log.debug("init_models() called again; already initialized, skipping.")
        return

    ex: Set[str] = set(exclude or [])
    loaded: List[str] = []
    for mod in _MODEL_MODULES:
        if mod in ex:
            continue
        importlib.import_module(mod)
        loaded.append(mod)

    configure_mappers()
    _INITIALIZED = True
    log.info("ORM models initialized & mappers configured (loaded %d modules)", len(loaded))
