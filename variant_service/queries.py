"""
Variant Service — クエリハンドラ (Read 側)
"""

from sqlalchemy.ext.asyncio import AsyncSession

from . import variant_store
from .errors import InvalidArgumentError, NotFoundError


def serialize_variant(v: dict) -> dict:
    return {
        "id": v["id"],
        "productId": v["product_id"],
        "size": v["size"],
        "sku": v["sku"],
        "price": v["price"],
        "stock": v["stock"],
        "discountPercent": v["discount_percent"],
        "discountPrice": v["discount_price"],
        "isActive": v["is_active"],
        "createdBy": v["created_by"],
        "createdAt": v["created_at"].isoformat() if v["created_at"] else None,
        "updatedAt": v["updated_at"].isoformat() if v["updated_at"] else None,
    }


async def get_variant(session: AsyncSession, variant_id: str) -> dict:
    variant = await variant_store.get(session, variant_id)
    if not variant:
        raise NotFoundError("Variant not found")
    return serialize_variant(variant)


async def list_by_product(session: AsyncSession, product_id: str) -> list[dict]:
    return [serialize_variant(v) for v in await variant_store.find_by(session, [product_id])]


async def list_by_products(session: AsyncSession, product_ids: list[str]) -> list[dict]:
    if not product_ids:
        raise InvalidArgumentError("productIds array is required")
    return [serialize_variant(v) for v in await variant_store.find_by(session, product_ids)]


async def list_by_ids(session: AsyncSession, variant_ids: list[str]) -> list[dict]:
    return [serialize_variant(v) for v in await variant_store.find_by_ids(session, variant_ids)]


async def list_variants(
    session: AsyncSession,
    filters: dict,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> dict:
    """フィルタ付き一覧をページング情報と一緒に返す。"""
    rows, total = await variant_store.find_by_specification(
        session, filters, page, limit, sort_by, sort_order
    )
    limit = min(limit, variant_store.MAX_PAGE_LIMIT)
    return {
        "message": "Variants fetched successfully",
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": -(-total // limit),
        },
        "variants": [serialize_variant(v) for v in rows],
    }
