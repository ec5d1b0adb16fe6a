"""
Variant Service — FastAPI エントリーポイント

商品バリアント（在庫・価格・割引）を管理するサービス。

  /api/variants/internal/bulk-discount/*  : 一括割引 Saga（内部サービス専用）
  /api/variants/*                         : バリアントの作成・参照・更新（管理者）
"""

import logging
from contextlib import asynccontextmanager
from typing import Literal

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, StrictBool, StrictFloat, StrictInt
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from . import commands, queries
from .auth import AuthContext, authenticate, require_admin_role, verify_internal_key
from .catalog import ProductCatalogClient
from .config import load_settings
from .errors import VariantServiceError
from .orchestrator import BulkDiscountSaga
from .queries import serialize_variant
from .tables import init_schema

logger = logging.getLogger(__name__)

settings = load_settings()

engine = create_async_engine(settings.database_url, echo=False)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
redis_pool: aioredis.Redis | None = None
catalog = ProductCatalogClient(settings.product_service_url)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    await init_schema(engine)
    redis_pool = aioredis.from_url(settings.redis_url, decode_responses=True)
    yield
    await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Variant Service", lifespan=lifespan)


# ── Error Handlers ───────────────────────────────


@app.exception_handler(VariantServiceError)
async def handle_service_error(request: Request, exc: VariantServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    message = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
        for err in exc.errors()
    )
    return JSONResponse(
        status_code=400,
        content={"error": "invalid_argument", "message": message},
    )


# ── Auth Dependencies ────────────────────────────


async def require_admin(
    authorization: str | None = Header(default=None),
) -> AuthContext:
    ctx = authenticate(authorization, settings.access_token_secret)
    return require_admin_role(ctx)


async def require_internal_caller(
    x_internal_key: str | None = Header(default=None),
) -> None:
    verify_internal_key(x_internal_key, settings.internal_api_key)


# ── Request Models ───────────────────────────────


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# 数値・真偽値は型変換しない（true や "20" を 1 や 20 として受け付けない）
Number = StrictInt | StrictFloat


class PrepareBulkDiscountRequest(CamelModel):
    product_ids: list[str]
    discount_percent: Number
    initiated_by: str | None = None


class OperationRequest(CamelModel):
    operation_id: str


class StockUpdateItem(CamelModel):
    variant_id: str
    quantity: StrictInt
    type: Literal["increase", "decrease", "set"]


class BulkStockRequest(CamelModel):
    updates: list[StockUpdateItem]


class CreateVariantRequest(CamelModel):
    size: str
    price: Number
    stock: StrictInt
    sku: str | None = None


class CreateVariantsRequest(CamelModel):
    variants: list[CreateVariantRequest]


class ProductIdsRequest(CamelModel):
    product_ids: list[str]


class UpdateStockRequest(CamelModel):
    stock: StrictInt


class UpdateDiscountRequest(CamelModel):
    discount_percent: Number


class UpdateStatusRequest(CamelModel):
    is_active: StrictBool


class RemoveDiscountItem(CamelModel):
    variant_id: str


class BulkRemoveDiscountRequest(CamelModel):
    updates: list[RemoveDiscountItem]


# ── Bulk Discount Saga (内部サービス専用) ────────


@app.post(
    "/api/variants/internal/bulk-discount/prepare",
    dependencies=[Depends(require_internal_caller)],
)
async def prepare_bulk_discount(req: PrepareBulkDiscountRequest):
    """Saga Step 1: スナップショットを取り、割引を適用する。"""
    saga = BulkDiscountSaga(async_session, redis_pool)
    return await saga.prepare(req.product_ids, req.discount_percent, req.initiated_by)


@app.post(
    "/api/variants/internal/bulk-discount/commit",
    dependencies=[Depends(require_internal_caller)],
)
async def commit_bulk_discount(req: OperationRequest):
    """Saga Step 2a: 確定する。"""
    saga = BulkDiscountSaga(async_session, redis_pool)
    return await saga.commit(req.operation_id)


@app.post(
    "/api/variants/internal/bulk-discount/rollback",
    dependencies=[Depends(require_internal_caller)],
)
async def rollback_bulk_discount(req: OperationRequest):
    """Saga Step 2b: 補償トランザクション。"""
    saga = BulkDiscountSaga(async_session, redis_pool)
    return await saga.rollback(req.operation_id)


@app.patch(
    "/api/variants/internal/remove-discount-by-products",
    dependencies=[Depends(require_internal_caller)],
)
async def remove_discount_by_products(req: ProductIdsRequest):
    """複数商品のセール終了（1 トランザクション）"""
    async with async_session() as session:
        count = await commands.remove_discount_by_products(
            session, redis_pool, req.product_ids
        )
    return {"message": "Discount removed for all variants", "variantCount": count}


@app.get(
    "/api/variants/internal/bulk-discount/{operation_id}",
    dependencies=[Depends(require_internal_caller)],
)
async def get_bulk_discount(operation_id: str):
    saga = BulkDiscountSaga(async_session, redis_pool)
    return await saga.get_operation(operation_id)


# ── Command Endpoints (Write 側) ─────────────────


@app.post("/api/variants/create/{product_id}", status_code=201)
async def create_variant(
    product_id: str,
    req: CreateVariantRequest,
    user: AuthContext = Depends(require_admin),
):
    async with async_session() as session:
        created = await commands.create_variants(
            session,
            redis_pool,
            catalog,
            product_id,
            [req.model_dump()],
            user.user_id,
            settings.sku_max_attempts,
        )
    return {"message": "Variant created successfully", "variant": serialize_variant(created[0])}


@app.post("/api/variants/create-many/{product_id}", status_code=201)
async def create_variants(
    product_id: str,
    req: CreateVariantsRequest,
    user: AuthContext = Depends(require_admin),
):
    async with async_session() as session:
        created = await commands.create_variants(
            session,
            redis_pool,
            catalog,
            product_id,
            [v.model_dump() for v in req.variants],
            user.user_id,
            settings.sku_max_attempts,
        )
    return {
        "message": "Variants created successfully",
        "variants": [serialize_variant(v) for v in created],
    }


@app.patch(
    "/api/variants/bulk-update-stocks", dependencies=[Depends(require_admin)]
)
async def bulk_update_stock(req: BulkStockRequest):
    async with async_session() as session:
        await commands.bulk_update_stock(
            session, redis_pool, [u.model_dump() for u in req.updates]
        )
    return {"message": "Stock updated successfully"}


@app.patch(
    "/api/variants/update-stock/{variant_id}", dependencies=[Depends(require_admin)]
)
async def update_stock(variant_id: str, req: UpdateStockRequest):
    async with async_session() as session:
        variant = await commands.update_stock(session, redis_pool, variant_id, req.stock)
    return {"message": "Stock updated successfully", "variant": serialize_variant(variant)}


@app.patch(
    "/api/variants/update-discount/{variant_id}", dependencies=[Depends(require_admin)]
)
async def update_discount(variant_id: str, req: UpdateDiscountRequest):
    async with async_session() as session:
        variant = await commands.update_discount(
            session, redis_pool, variant_id, req.discount_percent
        )
    return {"message": "Discount updated successfully", "variant": serialize_variant(variant)}


@app.patch(
    "/api/variants/update-status/{variant_id}", dependencies=[Depends(require_admin)]
)
async def update_status(variant_id: str, req: UpdateStatusRequest):
    async with async_session() as session:
        variant = await commands.update_status(session, variant_id, req.is_active)
    return {"message": "Status updated successfully", "variant": serialize_variant(variant)}


@app.patch(
    "/api/variants/bulk-discount-by-product/{product_id}",
    dependencies=[Depends(require_admin)],
)
async def update_discount_by_product(product_id: str, req: UpdateDiscountRequest):
    async with async_session() as session:
        count = await commands.update_discount_by_product(
            session, redis_pool, catalog, product_id, req.discount_percent
        )
    return {"message": "Discount updated successfully", "variantCount": count}


@app.patch(
    "/api/variants/remove-discount/{variant_id}", dependencies=[Depends(require_admin)]
)
async def remove_discount(variant_id: str):
    async with async_session() as session:
        variant = await commands.remove_discount(session, redis_pool, variant_id)
    return {"message": "Discount removed successfully", "variant": serialize_variant(variant)}


@app.patch(
    "/api/variants/remove-discount-by-product/{product_id}",
    dependencies=[Depends(require_admin)],
)
async def remove_discount_by_product(product_id: str):
    async with async_session() as session:
        count = await commands.remove_discount_by_product(
            session, redis_pool, catalog, product_id
        )
    return {"message": "Discount removed successfully", "variantCount": count}


@app.patch(
    "/api/variants/bulk-remove-discount", dependencies=[Depends(require_admin)]
)
async def bulk_remove_discount(req: BulkRemoveDiscountRequest):
    async with async_session() as session:
        count = await commands.bulk_remove_discount(
            session, redis_pool, [u.variant_id for u in req.updates]
        )
    return {"message": "Discounts removed successfully", "modifiedCount": count}


# ── Query Endpoints (Read 側) ────────────────────


@app.get("/api/variants/by-product/{product_id}")
async def get_variants_by_product(product_id: str):
    await catalog.ensure_product_exists(product_id)
    async with async_session() as session:
        return {"variants": await queries.list_by_product(session, product_id)}


@app.post("/api/variants/by-product-ids")
async def get_variants_by_product_ids(req: ProductIdsRequest):
    async with async_session() as session:
        return {"variants": await queries.list_by_products(session, req.product_ids)}


@app.get("/api/variants/by-ids")
async def get_variants_by_ids(variant_ids: str = Query(default="", alias="variantIds")):
    ids = [vid.strip() for vid in variant_ids.split(",") if vid.strip()]
    async with async_session() as session:
        return {"variants": await queries.list_by_ids(session, ids)}


@app.get("/api/variants")
async def list_variants(
    page: int = 1,
    limit: int = 10,
    size: str | None = None,
    min_price: float | None = Query(default=None, alias="minPrice"),
    max_price: float | None = Query(default=None, alias="maxPrice"),
    in_stock: bool | None = Query(default=None, alias="inStock"),
    is_active: bool | None = Query(default=None, alias="isActive"),
    search: str | None = None,
    sort_by: str = Query(default="createdAt", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
):
    """フィルタ・ページング付きのバリアント一覧"""
    filters = {
        "size": size,
        "search": search,
        "min_price": min_price,
        "max_price": max_price,
        "in_stock": in_stock,
        "is_active": is_active,
    }
    async with async_session() as session:
        return await queries.list_variants(
            session, filters, page, limit, sort_by, sort_order
        )


@app.get("/api/variants/{variant_id}")
async def get_variant(variant_id: str):
    async with async_session() as session:
        return {"variant": await queries.get_variant(session, variant_id)}


@app.get("/health")
async def health():
    return {"status": "ok", "service": settings.service_name}
