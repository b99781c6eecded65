# shopbridge/models/__init__.py
"""
统一导出 ORM 模型。
"""

from shopbridge.models.invoice import Invoice, InvoiceStatus
from shopbridge.models.store import Store

__all__ = ["Invoice", "InvoiceStatus", "Store"]
