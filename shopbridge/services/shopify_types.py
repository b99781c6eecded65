# shopbridge/services/shopify_types.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, field_validator

SHOPIFY_DOMAIN_SUFFIX = ".myshopify.com"

# 集成所需的最小权限
REQUIRED_SCOPES = ("read_orders", "write_script_tags")


@dataclass(frozen=True)
class ShopifyApiCredentials:
    """
    调用 Shopify Admin API 的凭据（私有应用：api_key + password）。

    shop_name 可以是 "my-shop"（自动补 .myshopify.com）或带点的完整域名。
    """

    shop_name: str
    api_key: str
    api_password: str

    @property
    def host(self) -> str:
        if "." in self.shop_name:
            return self.shop_name
        return f"{self.shop_name}{SHOPIFY_DOMAIN_SUFFIX}"


class ShopifyOrder(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    financial_status: Optional[str] = None
    total_price: Decimal = Decimal("0")
    currency: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> Optional[str]:
        # Shopify REST 返回的 id 是整数
        if v is None:
            return None
        return str(v)


class ShopifyScriptTag(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    src: Optional[str] = None
    event: Optional[str] = None
    display_scope: Optional[str] = None


class ShopifySettings(BaseModel):
    """
    商户在 store blob 里的 Shopify 集成配置（命名空间 "shopify"）。
    """

    api_key: Optional[str] = None
    password: Optional[str] = None
    shop_name: Optional[str] = None
    integrated_at: Optional[datetime] = None
    script_id: Optional[str] = None

    @field_validator("api_key", "password", "shop_name", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    def credentials_populated(self) -> bool:
        return bool(self.api_key) and bool(self.password) and bool(self.shop_name)

    @property
    def integrated(self) -> bool:
        return self.integrated_at is not None

    def create_shopify_api_credentials(self) -> ShopifyApiCredentials:
        return ShopifyApiCredentials(
            shop_name=self.shop_name or "",
            api_key=self.api_key or "",
            api_password=self.password or "",
        )


class StoreBlob(BaseModel):
    """
    stores.blob 的结构化视图。

    只解析本服务关心的命名空间，其余键原样保留（extra="allow"），
    写回时整块替换。
    """

    model_config = ConfigDict(extra="allow")

    shopify: Optional[ShopifySettings] = None

    @classmethod
    def from_raw(cls, raw: Optional[Dict[str, Any]]) -> "StoreBlob":
        return cls.model_validate(raw or {})

    def to_raw(self) -> Dict[str, Any]:
        out = self.model_dump(mode="json")
        if out.get("shopify") is None:
            out.pop("shopify", None)
        return out
