"""
Variant Service — バリアントストア

variants テーブルに対する読み書きをすべてここに集約する。
関数はトランザクションを開始しない。呼び出し側が session.begin() の中で
呼ぶことで、複数の書き込みが all-or-nothing になる。

一括書き込みの途中で例外が発生した場合、呼び出し側のトランザクションが
ロールバックされるため、部分的な書き込みは外から観測されない。
"""

import random
import re
import secrets
import uuid
from collections.abc import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .aggregate import compute_discount_price
from .errors import InsufficientStockError, InvalidArgumentError, NotFoundError
from .tables import utcnow, variants

SORTABLE_COLUMNS = {
    "created_at": variants.c.created_at,
    "createdAt": variants.c.created_at,
    "updated_at": variants.c.updated_at,
    "updatedAt": variants.c.updated_at,
    "price": variants.c.price,
    "stock": variants.c.stock,
    "size": variants.c.size,
    "sku": variants.c.sku,
    "discount_percent": variants.c.discount_percent,
    "discountPercent": variants.c.discount_percent,
}
MAX_PAGE_LIMIT = 100


def _row_to_dict(row) -> dict:
    data = dict(row._mapping)
    data["is_active"] = bool(data["is_active"])
    return data


# ── Point reads ──────────────────────────────────


async def get(session: AsyncSession, variant_id: str) -> dict | None:
    result = await session.execute(select(variants).where(variants.c.id == variant_id))
    row = result.fetchone()
    return _row_to_dict(row) if row else None


async def find_by_ids(session: AsyncSession, variant_ids: Iterable[str]) -> list[dict]:
    ids = list(variant_ids)
    if not ids:
        return []
    result = await session.execute(
        select(variants)
        .where(variants.c.id.in_(ids))
        .order_by(variants.c.created_at, variants.c.id)
    )
    return [_row_to_dict(row) for row in result.fetchall()]


async def find_by(session: AsyncSession, product_ids: Iterable[str]) -> list[dict]:
    """指定した商品群に属するすべてのバリアントを返す。"""
    ids = list(product_ids)
    if not ids:
        return []
    result = await session.execute(
        select(variants)
        .where(variants.c.product_id.in_(ids))
        .order_by(variants.c.created_at, variants.c.id)
    )
    return [_row_to_dict(row) for row in result.fetchall()]


async def existing_sizes(
    session: AsyncSession, product_id: str, sizes: Iterable[str]
) -> list[str]:
    wanted = list(sizes)
    if not wanted:
        return []
    result = await session.execute(
        select(variants.c.size).where(
            variants.c.product_id == product_id,
            variants.c.size.in_(wanted),
        )
    )
    return [row.size for row in result.fetchall()]


# ── Specification query ──────────────────────────


async def find_by_specification(
    session: AsyncSession,
    filters: dict,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> tuple[list[dict], int]:
    """
    フィルタ・ページング・ソート付きの一覧取得。

    filters のキー:
        size       : size の部分一致（大文字小文字を区別しない）
        search     : sku の部分一致（大文字小文字を区別しない）
        min_price  : price >= min_price
        max_price  : price <= max_price
        in_stock   : True なら stock > 0、False なら stock <= 0
        is_active  : 完全一致
    """
    if page < 1 or limit < 1:
        raise InvalidArgumentError("page and limit must be positive integers")
    if sort_by not in SORTABLE_COLUMNS:
        raise InvalidArgumentError(f"Cannot sort by {sort_by}")
    if sort_order not in ("asc", "desc"):
        raise InvalidArgumentError("sortOrder must be asc or desc")
    limit = min(limit, MAX_PAGE_LIMIT)

    conditions = []
    if filters.get("size"):
        conditions.append(variants.c.size.icontains(filters["size"], autoescape=True))
    if filters.get("search"):
        conditions.append(variants.c.sku.icontains(filters["search"], autoescape=True))
    if filters.get("min_price") is not None:
        conditions.append(variants.c.price >= filters["min_price"])
    if filters.get("max_price") is not None:
        conditions.append(variants.c.price <= filters["max_price"])
    if filters.get("in_stock") is not None:
        conditions.append(
            variants.c.stock > 0 if filters["in_stock"] else variants.c.stock <= 0
        )
    if filters.get("is_active") is not None:
        conditions.append(variants.c.is_active == filters["is_active"])

    column = SORTABLE_COLUMNS[sort_by]
    ordering = column.asc() if sort_order == "asc" else column.desc()

    total = await session.scalar(
        select(func.count()).select_from(variants).where(*conditions)
    )
    result = await session.execute(
        select(variants)
        .where(*conditions)
        .order_by(ordering, variants.c.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return [_row_to_dict(row) for row in result.fetchall()], int(total or 0)


# ── Batch mutation primitives ────────────────────


async def bulk_apply_discount(session: AsyncSession, items: list[dict]) -> None:
    """
    items: [{variant_id, discount_percent, discount_price}, ...]

    呼び出し側のトランザクション内で全件を書き込む。
    存在しないバリアントがあれば NotFound を送出し、バッチ全体を中止させる。
    """
    now = utcnow()
    for item in items:
        result = await session.execute(
            update(variants)
            .where(variants.c.id == item["variant_id"])
            .values(
                discount_percent=item["discount_percent"],
                discount_price=item["discount_price"],
                updated_at=now,
            )
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Variant not found: {item['variant_id']}")


async def clear_discounts(session: AsyncSession, variant_ids: Iterable[str]) -> int:
    """
    指定バリアントの割引を 0 に戻し、実際に変更した件数を返す。

    存在しない ID と割引が付いていないバリアントは数えない。
    """
    ids = list(variant_ids)
    if not ids:
        return 0
    result = await session.execute(
        update(variants)
        .where(
            variants.c.id.in_(ids),
            (variants.c.discount_percent != 0) | (variants.c.discount_price != 0),
        )
        .values(discount_percent=0, discount_price=0, updated_at=utcnow())
    )
    return result.rowcount


async def bulk_apply_stock(session: AsyncSession, updates: list[dict]) -> None:
    """
    updates: [{variant_id, type: increase|decrease|set, quantity}, ...]

    decrease は「stock >= quantity」を条件にした 1 文の UPDATE で行う。
    検査と書き込みが同じ文なので、読み取りと書き込みの間の競合窓がない。
    1 件でも在庫不足なら InsufficientStock を送出し、バッチ全体を中止させる。
    """
    now = utcnow()
    for item in updates:
        variant_id = item["variant_id"]
        quantity = item["quantity"]
        stmt = update(variants).where(variants.c.id == variant_id)

        if item["type"] == "increase":
            stmt = stmt.values(stock=variants.c.stock + quantity, updated_at=now)
        elif item["type"] == "decrease":
            stmt = stmt.where(variants.c.stock >= quantity).values(
                stock=variants.c.stock - quantity, updated_at=now
            )
        elif item["type"] == "set":
            stmt = stmt.values(stock=quantity, updated_at=now)
        else:
            raise InvalidArgumentError(f"Unknown stock update type: {item['type']}")

        result = await session.execute(stmt)
        if result.rowcount == 0:
            await _raise_stock_failure(session, variant_id, quantity)


async def _raise_stock_failure(
    session: AsyncSession, variant_id: str, requested: int
) -> None:
    available = await session.scalar(
        select(variants.c.stock).where(variants.c.id == variant_id)
    )
    if available is None:
        raise NotFoundError(f"Variant not found: {variant_id}")
    raise InsufficientStockError(variant_id, available, requested)


# ── Single-item mutations ────────────────────────


async def apply_discount(
    session: AsyncSession, variant_id: str, discount_percent: float
) -> dict:
    """割引率を設定し、同じ書き込みで割引価格も再計算する。"""
    variant = await get(session, variant_id)
    if not variant:
        raise NotFoundError("Variant not found")
    await bulk_apply_discount(
        session,
        [
            {
                "variant_id": variant_id,
                "discount_percent": discount_percent,
                "discount_price": compute_discount_price(
                    variant["price"], discount_percent
                ),
            }
        ],
    )
    return await get(session, variant_id)


async def adjust_stock(session: AsyncSession, variant_id: str, delta: int) -> dict:
    """在庫を delta だけ増減する。0 未満になる場合は InsufficientStock。"""
    if delta >= 0:
        change = {"variant_id": variant_id, "type": "increase", "quantity": delta}
    else:
        change = {"variant_id": variant_id, "type": "decrease", "quantity": -delta}
    await bulk_apply_stock(session, [change])
    return await get(session, variant_id)


async def set_active(session: AsyncSession, variant_id: str, is_active: bool) -> dict:
    result = await session.execute(
        update(variants)
        .where(variants.c.id == variant_id)
        .values(is_active=is_active, updated_at=utcnow())
    )
    if result.rowcount == 0:
        raise NotFoundError("Variant not found")
    return await get(session, variant_id)


# ── Creation ─────────────────────────────────────


def _sku_candidate(product_id: str, size: str) -> str:
    size_part = re.sub(r"\s+", "", size).upper()
    return f"P{product_id[-5:]}-{size_part}-{random.randint(1000, 9999)}"


async def _sku_taken(session: AsyncSession, sku: str) -> bool:
    found = await session.scalar(select(variants.c.id).where(variants.c.sku == sku))
    return found is not None


async def allocate_sku(
    session: AsyncSession,
    product_id: str,
    size: str,
    max_attempts: int = 10,
    reserved: Iterable[str] = (),
) -> str:
    """
    SKU を採番する: P<product_id 末尾5文字>-<SIZE>-<4桁乱数>

    衝突している間は再生成するが、試行回数は max_attempts までに制限する。
    上限に達したら 8 桁の16進乱数サフィックスにフォールバックする。
    最終的な一意性は sku のユニーク制約が保証する。
    """
    taken = set(reserved)
    for _ in range(max_attempts):
        candidate = _sku_candidate(product_id, size)
        if candidate not in taken and not await _sku_taken(session, candidate):
            return candidate
    size_part = re.sub(r"\s+", "", size).upper()
    return f"P{product_id[-5:]}-{size_part}-{secrets.token_hex(4).upper()}"


async def insert_variants(
    session: AsyncSession,
    product_id: str,
    entries: list[dict],
    created_by: str | None = None,
    sku_max_attempts: int = 10,
) -> list[dict]:
    """検査済みのエントリをまとめて挿入し、作成したバリアントを返す。"""
    now = utcnow()
    rows = []
    allocated: list[str] = []
    for entry in entries:
        sku = entry.get("sku") or await allocate_sku(
            session, product_id, entry["size"], sku_max_attempts, allocated
        )
        allocated.append(sku)
        rows.append(
            {
                "id": str(uuid.uuid4()),
                "product_id": product_id,
                "size": entry["size"],
                "sku": sku,
                "price": entry["price"],
                "stock": entry["stock"],
                "discount_percent": 0,
                "discount_price": 0,
                "is_active": True,
                "created_by": created_by,
                "created_at": now,
                "updated_at": now,
            }
        )
    await session.execute(variants.insert(), rows)
    stored = {v["id"]: v for v in await find_by_ids(session, [row["id"] for row in rows])}
    return [stored[row["id"]] for row in rows]
