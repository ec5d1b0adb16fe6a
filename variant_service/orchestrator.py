"""
Saga Coordinator — 一括割引 Saga

Product Catalog Service が複数商品にまたがる割引を適用するための
3 フェーズプロトコル（呼び出し元がオーケストレーター）:

  ┌─────────────────────────────────────────────────────────────┐
  │  1. prepare  : 変更前の割引状態をスナップショットし、         │
  │                新しい割引を全バリアントに適用する             │
  │                （バリアント更新 + 監査レコード作成 = 1 Tx）   │
  │  2. 呼び出し元が自サービス側の処理を実行                     │
  │     ├─ 成功 → commit   : 監査レコードを committed に確定     │
  │     └─ 失敗 → rollback : スナップショットから復元             │
  │                          (補償トランザクション)              │
  └─────────────────────────────────────────────────────────────┘

commit / rollback は status の compare-and-set で排他される。
同じ operationId に対して成功するのはどちらか一方の 1 回だけ。

既知の制約: 異なる operationId 同士が同じバリアントを対象にしても
直列化しない（後勝ち）。rollback は途中の無関係な書き込みに関係なく
スナップショットの値に戻す。
"""

import logging
import uuid
from collections.abc import Iterable

import redis.asyncio as aioredis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from . import audit_ledger, variant_store
from .aggregate import OperationStatus, compute_discount_price
from .errors import InternalError, NotFoundError
from .events import (
    BulkDiscountCommitted,
    BulkDiscountPrepared,
    BulkDiscountRolledBack,
    publish_event,
)
from .tables import utcnow
from .validators import validate_discount, validate_product_ids

logger = logging.getLogger(__name__)


class BulkDiscountSaga:
    """一括割引 Saga のコーディネーター（永続状態は持たない）"""

    def __init__(
        self,
        session_factory: sessionmaker,
        redis: aioredis.Redis | None = None,
    ):
        self.session_factory = session_factory
        self.redis = redis

    async def prepare(
        self,
        product_ids: Iterable[str],
        discount_percent: float,
        initiated_by: str | None = None,
    ) -> dict:
        """
        割引を適用し、operationId を返す。

        入力検査はストアに触れる前に行う。
        バリアントの一括更新と監査レコードの作成は同じトランザクションで
        コミットされ、どちらか一方だけが残ることはない。
        """
        validate_product_ids(product_ids)
        validate_discount(discount_percent)
        product_ids = list(dict.fromkeys(product_ids))

        operation_id = str(uuid.uuid4())

        async with self.session_factory() as session:
            try:
                async with session.begin():
                    variants = await variant_store.find_by(session, product_ids)
                    if not variants:
                        raise NotFoundError("No variants found for given products")

                    # ── 変更前の値をスナップショット ─────────
                    items = [
                        {
                            "variantId": v["id"],
                            "oldDiscountPercent": v["discount_percent"] or 0,
                            "oldDiscountPrice": v["discount_price"] or 0,
                        }
                        for v in variants
                    ]

                    # ── 現在の価格から新しい割引価格を計算 ───
                    await variant_store.bulk_apply_discount(
                        session,
                        [
                            {
                                "variant_id": v["id"],
                                "discount_percent": discount_percent,
                                "discount_price": compute_discount_price(
                                    v["price"], discount_percent
                                ),
                            }
                            for v in variants
                        ],
                    )

                    await audit_ledger.create(
                        session,
                        {
                            "operation_id": operation_id,
                            "product_ids": product_ids,
                            "variant_count": len(variants),
                            "discount_percent": discount_percent,
                            "created_by": initiated_by,
                            "items": items,
                        },
                    )
            except SQLAlchemyError as e:
                logger.exception("Failed preparing bulk discount")
                raise InternalError(f"Failed preparing bulk discount: {e}") from e

        logger.info(
            "Bulk discount prepared operationId=%s variants=%d discount=%s",
            operation_id,
            len(variants),
            discount_percent,
        )
        await publish_event(
            self.redis,
            BulkDiscountPrepared(
                operation_id=operation_id,
                product_ids=product_ids,
                variant_count=len(variants),
                discount_percent=discount_percent,
                timestamp=utcnow(),
            ),
        )
        return {"operationId": operation_id, "variantCount": len(variants)}

    async def commit(self, operation_id: str) -> dict:
        """
        pending の操作を committed に確定する。

        割引は prepare 時点で適用済みなので、バリアントは変更しない。
        """
        logger.info("Committing bulk discount operationId=%s", operation_id)
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    await audit_ledger.transition_status(
                        session,
                        operation_id,
                        OperationStatus.PENDING,
                        OperationStatus.COMMITTED,
                    )
            except SQLAlchemyError as e:
                logger.exception("Failed committing bulk discount")
                raise InternalError(f"Failed committing bulk discount: {e}") from e

        await publish_event(
            self.redis,
            BulkDiscountCommitted(operation_id=operation_id, timestamp=utcnow()),
        )
        return {"message": "Committed", "operationId": operation_id}

    async def rollback(self, operation_id: str) -> dict:
        """
        補償トランザクション: スナップショットから割引状態を復元する。

        status の遷移を先に行うことで、同時に走った commit / rollback は
        バリアントに触れる前に Conflict で脱落する。
        """
        logger.info("Rolling back bulk discount operationId=%s", operation_id)
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    await audit_ledger.transition_status(
                        session,
                        operation_id,
                        OperationStatus.PENDING,
                        OperationStatus.ROLLEDBACK,
                    )
                    record = await audit_ledger.find_by_operation_id(
                        session, operation_id
                    )
                    items = record["items"]
                    await variant_store.bulk_apply_discount(
                        session,
                        [
                            {
                                "variant_id": item["variantId"],
                                "discount_percent": item["oldDiscountPercent"],
                                "discount_price": item["oldDiscountPrice"],
                            }
                            for item in items
                        ],
                    )
            except SQLAlchemyError as e:
                logger.exception("Failed rolling back bulk discount")
                raise InternalError(
                    f"Failed rolling back bulk discount: {e}"
                ) from e

        logger.info(
            "Bulk discount rolled back operationId=%s variants=%d",
            operation_id,
            len(items),
        )
        await publish_event(
            self.redis,
            BulkDiscountRolledBack(
                operation_id=operation_id,
                variant_count=len(items),
                timestamp=utcnow(),
            ),
        )
        return {"message": "Rolledback successfully", "operationId": operation_id}

    async def get_operation(self, operation_id: str) -> dict:
        async with self.session_factory() as session:
            record = await audit_ledger.find_by_operation_id(session, operation_id)
        if record is None:
            raise NotFoundError("Operation not found")
        return {
            "operationId": record["operation_id"],
            "productIds": record["product_ids"],
            "variantCount": record["variant_count"],
            "discountPercent": record["discount_percent"],
            "status": record["status"].value,
            "createdBy": record["created_by"],
            "items": record["items"],
            "createdAt": record["created_at"].isoformat(),
            "updatedAt": record["updated_at"].isoformat(),
        }
