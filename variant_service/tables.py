"""
Variant Service — テーブル定義

variants          : バリアント (Variant Store が所有)
discount_audits   : 一括割引オペレーションの監査レコード (Audit Ledger が所有)

どちらも削除しない。バリアントは is_active で無効化し、
監査レコードは永続的な監査証跡として残す。
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.ext.asyncio import AsyncEngine

metadata = MetaData()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


variants = Table(
    "variants",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("product_id", String(64), nullable=False, index=True),
    Column("size", String(64), nullable=False),
    Column("sku", String(128), nullable=False, unique=True),
    Column("price", Float, nullable=False, index=True),
    Column("stock", Integer, nullable=False, default=0, index=True),
    Column("discount_percent", Float, nullable=False, default=0),
    Column("discount_price", Integer, nullable=False, default=0),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_by", String(64), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    ),
    UniqueConstraint("product_id", "size", name="uq_variants_product_size"),
    CheckConstraint("price > 0", name="ck_variants_price_positive"),
    CheckConstraint("stock >= 0", name="ck_variants_stock_non_negative"),
    CheckConstraint(
        "discount_percent >= 0 AND discount_percent <= 100",
        name="ck_variants_discount_percent_range",
    ),
    CheckConstraint("discount_price >= 0", name="ck_variants_discount_price"),
)


discount_audits = Table(
    "discount_audits",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("operation_id", String(36), nullable=False, unique=True),
    Column("product_ids", JSON, nullable=False),
    Column("variant_count", Integer, nullable=False),
    Column("discount_percent", Float, nullable=False),
    Column("status", String(16), nullable=False, default="pending", index=True),
    Column("created_by", String(64), nullable=True),
    Column("items", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    ),
)


async def init_schema(engine: AsyncEngine) -> None:
    """起動時にテーブルを作成する（存在する場合は何もしない）。"""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
