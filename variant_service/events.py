"""
Variant Service — イベント定義

バリアントドメインで発生するイベント。
コミット後に Redis Pub/Sub の variant_events チャネルへ発行し、
他サービス（Product Catalog など）へ通知する。
"""

import json
import logging
from datetime import datetime

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

CHANNEL = "variant_events"


class VariantEvent(BaseModel):
    timestamp: datetime

    @property
    def event_type(self) -> str:
        return type(self).__name__


class BulkDiscountPrepared(VariantEvent):
    """一括割引が適用された（pending）"""
    operation_id: str
    product_ids: list[str]
    variant_count: int
    discount_percent: float


class BulkDiscountCommitted(VariantEvent):
    """一括割引が確定された"""
    operation_id: str


class BulkDiscountRolledBack(VariantEvent):
    """一括割引が補償トランザクションで取り消された"""
    operation_id: str
    variant_count: int


class VariantsCreated(VariantEvent):
    """バリアントが作成された"""
    product_id: str
    variant_ids: list[str]


class StockUpdated(VariantEvent):
    """在庫が更新された（単体または一括）"""
    variant_ids: list[str]


class DiscountUpdated(VariantEvent):
    """割引率が変更された（Saga 以外の経路）"""
    variant_ids: list[str]
    discount_percent: float


async def publish_event(redis: aioredis.Redis | None, event: VariantEvent) -> None:
    """
    イベントを Redis に発行する。

    状態はすでにコミット済みなので、発行の失敗はリクエストを失敗させず
    警告ログに留める（Pub/Sub は fire-and-forget）。
    """
    if redis is None:
        return
    payload = json.dumps(
        {"event_type": event.event_type, "data": event.model_dump(mode="json")},
        default=str,
    )
    try:
        await redis.publish(CHANNEL, payload)
    except RedisError:
        logger.warning("Failed to publish %s", event.event_type, exc_info=True)
