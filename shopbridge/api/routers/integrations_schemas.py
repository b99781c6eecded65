# shopbridge/api/routers/integrations_schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from shopbridge.services.shopify_types import ShopifySettings

IntegrationCommand = Literal["ShopifySaveCredentials", "ShopifyClearCredentials"]


class ShopifyCredentialsIn(BaseModel):
    """
    表单里手工填写的 Shopify 私有应用凭据。
    """

    api_key: Optional[str] = None
    password: Optional[str] = None
    shop_name: Optional[str] = None

    def to_settings(self) -> ShopifySettings:
        return ShopifySettings(api_key=self.api_key, password=self.password, shop_name=self.shop_name)


class IntegrationsCommandIn(BaseModel):
    # 不传 command 时视为仅刷新页面，不做任何修改
    command: Optional[IntegrationCommand] = None
    shopify: Optional[ShopifyCredentialsIn] = None
    # 非空时优先解析，并强制走 ShopifySaveCredentials
    example_url: Optional[str] = Field(default=None, alias="exampleUrl")

    model_config = ConfigDict(populate_by_name=True)


class ShopifySettingsView(BaseModel):
    shop_name: Optional[str] = None
    api_key: Optional[str] = None
    password_preview: str = ""
    integrated: bool = False
    integrated_at: Optional[datetime] = None
    script_id: Optional[str] = None


class IntegrationsOut(BaseModel):
    ok: bool
    message: Optional[str] = None
    shopify: Optional[ShopifySettingsView] = None
    callback_script_url: str


class ShopifyInvoiceOut(BaseModel):
    invoice_id: str = Field(serialization_alias="invoiceId")
    status: str
