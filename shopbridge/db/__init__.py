# shopbridge/db/__init__.py
from shopbridge.db.base import Base, init_models

__all__ = ["Base", "init_models"]
