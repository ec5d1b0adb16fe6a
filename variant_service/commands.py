"""
Variant Service — コマンドハンドラ (Write 側)

Saga 以外の書き込み: バリアント作成、在庫更新、単体/商品単位の割引変更、
有効フラグの切り替え。

各コマンドは 1 つのトランザクション (session.begin()) で実行し、
コミット後に Redis Pub/Sub でイベントを発行する。
"""

import logging

import redis.asyncio as aioredis
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import variant_store
from .aggregate import compute_discount_price
from .catalog import ProductCatalogClient
from .errors import ConflictError, InvalidArgumentError, NotFoundError
from .events import DiscountUpdated, StockUpdated, VariantsCreated, publish_event
from .tables import utcnow
from .validators import (
    validate_create_batch,
    validate_discount,
    validate_product_ids,
    validate_stock_updates,
)

logger = logging.getLogger(__name__)


async def create_variants(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    catalog: ProductCatalogClient,
    product_id: str,
    entries: list[dict],
    created_by: str | None = None,
    sku_max_attempts: int = 10,
) -> list[dict]:
    """
    バリアント作成コマンド（1 件でも複数件でも同じ経路）

    1. カタログに商品が存在するか確認
    2. バッチを検査（size 重複、既存 size との衝突）
    3. 全件を 1 トランザクションで挿入
    """
    if not product_id:
        raise InvalidArgumentError("Product ID is required")
    await catalog.ensure_product_exists(product_id)

    try:
        async with session.begin():
            sizes = [e.get("size") for e in entries if isinstance(e.get("size"), str)]
            existing = await variant_store.existing_sizes(session, product_id, sizes)
            validate_create_batch(entries, existing)
            created = await variant_store.insert_variants(
                session, product_id, entries, created_by, sku_max_attempts
            )
    except IntegrityError as e:
        # 同時作成で size / sku のユニーク制約に触れた場合
        raise ConflictError("Variant already exists") from e

    await publish_event(
        redis,
        VariantsCreated(
            product_id=product_id,
            variant_ids=[v["id"] for v in created],
            timestamp=utcnow(),
        ),
    )
    return created


async def bulk_update_stock(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    updates: list[dict],
) -> None:
    """
    一括在庫更新コマンド

    1 件でも在庫不足・未存在があればバッチ全体を拒否し、何も書き込まない。
    """
    validate_stock_updates(updates)
    async with session.begin():
        await variant_store.bulk_apply_stock(session, updates)

    logger.info("Bulk stock update applied to %d variants", len(updates))
    await publish_event(
        redis,
        StockUpdated(
            variant_ids=[u["variant_id"] for u in updates], timestamp=utcnow()
        ),
    )


async def update_stock(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    variant_id: str,
    delta: int,
) -> dict:
    """在庫を delta だけ増減する（負数なら減算）。"""
    async with session.begin():
        variant = await variant_store.adjust_stock(session, variant_id, delta)
    await publish_event(redis, StockUpdated(variant_ids=[variant_id], timestamp=utcnow()))
    return variant


async def update_discount(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    variant_id: str,
    discount_percent: float,
) -> dict:
    validate_discount(discount_percent)
    async with session.begin():
        variant = await variant_store.apply_discount(session, variant_id, discount_percent)
    await publish_event(
        redis,
        DiscountUpdated(
            variant_ids=[variant_id],
            discount_percent=discount_percent,
            timestamp=utcnow(),
        ),
    )
    return variant


async def update_discount_by_product(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    catalog: ProductCatalogClient,
    product_id: str,
    discount_percent: float,
) -> int:
    """商品に属する全バリアントの割引率を変更し、対象件数を返す。"""
    validate_discount(discount_percent)
    await catalog.ensure_product_exists(product_id)
    async with session.begin():
        variants = await variant_store.find_by(session, [product_id])
        if not variants:
            raise NotFoundError("No variants found for this product")
        await variant_store.bulk_apply_discount(
            session,
            [
                {
                    "variant_id": v["id"],
                    "discount_percent": discount_percent,
                    "discount_price": compute_discount_price(v["price"], discount_percent),
                }
                for v in variants
            ],
        )
    await publish_event(
        redis,
        DiscountUpdated(
            variant_ids=[v["id"] for v in variants],
            discount_percent=discount_percent,
            timestamp=utcnow(),
        ),
    )
    return len(variants)


async def remove_discount(
    session: AsyncSession, redis: aioredis.Redis | None, variant_id: str
) -> dict:
    return await update_discount(session, redis, variant_id, 0)


async def remove_discount_by_product(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    catalog: ProductCatalogClient,
    product_id: str,
) -> int:
    return await update_discount_by_product(session, redis, catalog, product_id, 0)


async def remove_discount_by_products(
    session: AsyncSession, redis: aioredis.Redis | None, product_ids: list[str]
) -> int:
    """
    複数商品のセール終了: 対象商品の全バリアントの割引を 1 トランザクションで外す。

    バリアントが 1 件もなければ何もせず 0 を返す。
    """
    validate_product_ids(product_ids)
    product_ids = list(dict.fromkeys(product_ids))
    async with session.begin():
        variants = await variant_store.find_by(session, product_ids)
        await variant_store.bulk_apply_discount(
            session,
            [
                {"variant_id": v["id"], "discount_percent": 0, "discount_price": 0}
                for v in variants
            ],
        )

    logger.info(
        "Discount removed for %d variants of %d products", len(variants), len(product_ids)
    )
    if variants:
        await publish_event(
            redis,
            DiscountUpdated(
                variant_ids=[v["id"] for v in variants],
                discount_percent=0,
                timestamp=utcnow(),
            ),
        )
    return len(variants)


async def bulk_remove_discount(
    session: AsyncSession, redis: aioredis.Redis | None, variant_ids: list[str]
) -> int:
    """
    指定バリアントの割引を外し、実際に変更した件数を返す。

    存在しない ID はスキップする（エラーにしない）。
    """
    if not variant_ids:
        raise InvalidArgumentError("No updates provided")
    variant_ids = list(dict.fromkeys(variant_ids))
    async with session.begin():
        modified = await variant_store.clear_discounts(session, variant_ids)
    await publish_event(
        redis,
        DiscountUpdated(variant_ids=variant_ids, discount_percent=0, timestamp=utcnow()),
    )
    return modified


async def update_status(session: AsyncSession, variant_id: str, is_active: bool) -> dict:
    async with session.begin():
        return await variant_store.set_active(session, variant_id, is_active)
