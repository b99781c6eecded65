# shopbridge/core/config.py
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PKG_ROOT = Path(__file__).resolve().parent.parent


class AppSettings(BaseSettings):
    """
    全局应用配置：环境变量 / .env 文件读取。
    """

    # 运行环境
    ENV: str = Field(default="dev")
    DEBUG: bool = Field(default=False)

    # 数据库（异步 DSN；postgres:// 会被归一到 psycopg，sqlite:/// 会被归一到 aiosqlite）
    DATABASE_URL: str = Field(default="sqlite+aiosqlite:///./shopbridge.db")
    SQL_ECHO: bool = Field(default=False)
    # dev 下启动时直接 create_all；生产请走 alembic
    AUTO_CREATE_TABLES: bool = Field(default=False)

    # 日志
    LOG_LEVEL: str = Field(default="INFO")
    JSON_LOG: bool = Field(default=False)

    # Shopify Admin API
    SHOPIFY_API_VERSION: str = Field(default="2023-10")
    SHOPIFY_HTTP_TIMEOUT: float = Field(default=10.0, description="单次 Shopify 调用超时（秒）")

    # 回调脚本
    STATIC_ROOT: Path = Field(default=_PKG_ROOT / "static")
    BUNDLE_JS_CSS: bool = Field(default=True)
    # 热更新模式：每次请求都重新拼装脚本，不走缓存
    DEVELOPING: bool = Field(default=False)
    # 对外可访问的根地址；为空时按请求推断
    PUBLIC_BASE_URL: Optional[str] = Field(default=None)

    # 匿名接口按来源地址限流
    CALLBACK_RATE_LIMIT_QPS: int = Field(default=10)
    CORS_ALLOW_ORIGINS: List[str] = Field(default=["*"])

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> AppSettings:
    """全局单例设置入口。"""
    return AppSettings()
