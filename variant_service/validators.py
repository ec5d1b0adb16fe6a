"""
Variant Service — 一括操作バリデータ

ストアに触れる前に入力を検査する、状態を持たないチェック群。
失敗時は例外を送出し、以降の処理は一切実行しない。
"""

from collections import Counter
from collections.abc import Iterable
from numbers import Real

from .errors import ConflictError, InvalidArgumentError

STOCK_UPDATE_TYPES = ("increase", "decrease", "set")


def _is_number(value) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def validate_discount(discount_percent) -> None:
    if not _is_number(discount_percent) or not 0 <= discount_percent <= 100:
        raise InvalidArgumentError("Discount percent must be between 0 and 100")


def validate_product_ids(product_ids) -> None:
    if not isinstance(product_ids, (list, tuple, set, frozenset)) or not product_ids:
        raise InvalidArgumentError("productIds required")
    if any(not isinstance(pid, str) or not pid.strip() for pid in product_ids):
        raise InvalidArgumentError("productIds must be non-empty strings")


def validate_create_batch(entries: list[dict], existing_sizes: Iterable[str]) -> None:
    """
    作成バッチを検査する。

    - 各エントリ: size は空でない文字列、price > 0、stock は 0 以上の整数
    - バッチ内で size が重複していれば Conflict
    - 商品に同じ size が既に存在すれば Conflict（重複した size をすべて列挙）
    """
    if not entries:
        raise InvalidArgumentError("Variants array is required")

    for entry in entries:
        size = entry.get("size")
        if not isinstance(size, str) or not size.strip():
            raise InvalidArgumentError("Each variant must have a valid size")
        price = entry.get("price")
        if not _is_number(price) or price <= 0:
            raise InvalidArgumentError("Each variant must have a valid price")
        stock = entry.get("stock")
        if not isinstance(stock, int) or isinstance(stock, bool) or stock < 0:
            raise InvalidArgumentError("Each variant must have a valid stock")

    counts = Counter(entry["size"] for entry in entries)
    duplicated = sorted(size for size, n in counts.items() if n > 1)
    if duplicated:
        raise ConflictError(
            f"Duplicate sizes found in request payload: {', '.join(duplicated)}"
        )

    colliding = sorted(set(existing_sizes) & set(counts))
    if colliding:
        raise ConflictError(
            f"Variants with sizes already exist: {', '.join(colliding)}"
        )


def validate_stock_updates(updates: list[dict]) -> None:
    if not updates:
        raise InvalidArgumentError("Updates array is required")

    for update in updates:
        quantity = update.get("quantity")
        if (
            not update.get("variant_id")
            or update.get("type") not in STOCK_UPDATE_TYPES
            or not isinstance(quantity, int)
            or isinstance(quantity, bool)
            or quantity < 0
        ):
            raise InvalidArgumentError("Invalid update format")

    counts = Counter(update["variant_id"] for update in updates)
    repeated = sorted(vid for vid, n in counts.items() if n > 1)
    if repeated:
        raise InvalidArgumentError(
            f"Variant listed more than once in batch: {', '.join(repeated)}"
        )
