"""
Variant Service — 設定

すべての設定は環境変数から読み込む（12-factor）。
"""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    database_url: str
    redis_url: str
    internal_api_key: str
    access_token_secret: str
    product_service_url: str | None
    sku_max_attempts: int
    log_level: str
    service_name: str


def load_settings() -> Settings:
    return Settings(
        database_url=os.environ.get(
            "DATABASE_URL", "sqlite+aiosqlite:///./variants.db"
        ),
        redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379"),
        internal_api_key=os.environ.get("INTERNAL_API_KEY", ""),
        access_token_secret=os.environ.get("ACCESS_TOKEN_SECRET", ""),
        product_service_url=os.environ.get("PRODUCT_SERVICE_URL") or None,
        sku_max_attempts=int(os.environ.get("SKU_MAX_ATTEMPTS", "10")),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        service_name=os.environ.get("SERVICE_NAME", "variant-service"),
    )
