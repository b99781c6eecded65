# shopbridge/services/shopify_integration_errors.py
from __future__ import annotations


class ShopifyIntegrationError(Exception):
    """凭据流程中面向用户的错误（message 直接展示）；抛出时没有任何状态被修改。"""

    error_code = "shopify_integration_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class IntegrationValidationError(ShopifyIntegrationError):
    error_code = "invalid_shopify_credentials"


class ShopifyCredentialsRejected(ShopifyIntegrationError):
    error_code = "shopify_credentials_rejected"


class ShopifyPermissionInsufficient(ShopifyIntegrationError):
    error_code = "shopify_permission_insufficient"


class ShopifyUnreachable(ShopifyIntegrationError):
    error_code = "shopify_unavailable"
