"""
Variant Service — 監査台帳 (Audit Ledger)

一括割引オペレーションごとに 1 件の監査レコードを保持する。

    operation_id : 冪等性キー（Saga インスタンス全体を識別）
    status       : pending / committed / rolledback
    items        : 変更前の割引状態のスナップショット（ロールバック専用）

レコードは削除しない。status の変更は transition_status の
ガード付き compare-and-set だけで行う。
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .aggregate import OperationStatus
from .errors import ConflictError, InternalError, NotFoundError
from .tables import discount_audits, utcnow

logger = logging.getLogger(__name__)


def _row_to_dict(row) -> dict:
    data = dict(row._mapping)
    data["status"] = OperationStatus(data["status"])
    return data


async def create(session: AsyncSession, record: dict) -> None:
    """
    監査レコードを挿入する。

    operation_id の衝突は採番側で実質的に起こり得ないため、
    発生した場合は内部エラーとして扱う。
    """
    now = utcnow()
    try:
        await session.execute(
            discount_audits.insert().values(
                operation_id=record["operation_id"],
                product_ids=list(record["product_ids"]),
                variant_count=record["variant_count"],
                discount_percent=record["discount_percent"],
                status=OperationStatus.PENDING.value,
                created_by=record.get("created_by"),
                items=record["items"],
                created_at=now,
                updated_at=now,
            )
        )
    except IntegrityError as e:
        logger.error("operationId collision: %s", record["operation_id"])
        raise InternalError(
            f"Failed to record operation {record['operation_id']}"
        ) from e


async def find_by_operation_id(session: AsyncSession, operation_id: str) -> dict | None:
    result = await session.execute(
        select(discount_audits).where(discount_audits.c.operation_id == operation_id)
    )
    row = result.fetchone()
    return _row_to_dict(row) if row else None


async def transition_status(
    session: AsyncSession,
    operation_id: str,
    expected: OperationStatus,
    target: OperationStatus,
) -> None:
    """
    status を expected → target に遷移させる compare-and-set。

    UPDATE ... WHERE status = expected が 0 行なら、同時に走った
    commit / rollback に先を越されたか、すでに終端状態である。
    その場合は Conflict（レコード自体がなければ NotFound）。
    """
    if not expected.can_transition_to(target):
        raise ConflictError(
            f"Invalid status transition: {expected.value} -> {target.value}"
        )

    result = await session.execute(
        update(discount_audits)
        .where(
            discount_audits.c.operation_id == operation_id,
            discount_audits.c.status == expected.value,
        )
        .values(status=target.value, updated_at=utcnow())
    )
    if result.rowcount == 1:
        return

    record = await find_by_operation_id(session, operation_id)
    if record is None:
        raise NotFoundError("Operation not found")
    raise ConflictError(
        f"Operation not pending: {operation_id} is {record['status'].value}"
    )
