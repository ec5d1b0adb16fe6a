"""
Variant Service — ドメインルール

1. 割引価格の導出ルール
   discount_price = round(price * (1 - discount_percent / 100))  (discount_percent > 0)
                  = 0                                            (それ以外)
   discount_percent を変更する書き込みは、同じ書き込みで discount_price も
   再計算しなければならない。

2. 一括割引オペレーションの状態遷移:
       PENDING → COMMITTED   (呼び出し元が確定)
       PENDING → ROLLEDBACK  (呼び出し元が補償を要求)
   COMMITTED / ROLLEDBACK は終端状態で、そこからの遷移は存在しない。
"""

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum


def compute_discount_price(price: float, discount_percent: float) -> int:
    """現在の価格と割引率から割引価格を求める（四捨五入）。"""
    if discount_percent <= 0:
        return 0
    discounted = Decimal(str(price)) * (
        Decimal(1) - Decimal(str(discount_percent)) / Decimal(100)
    )
    return int(discounted.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class OperationStatus(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLEDBACK = "rolledback"

    @property
    def is_terminal(self) -> bool:
        return self is not OperationStatus.PENDING

    def can_transition_to(self, target: "OperationStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[OperationStatus, frozenset[OperationStatus]] = {
    OperationStatus.PENDING: frozenset(
        {OperationStatus.COMMITTED, OperationStatus.ROLLEDBACK}
    ),
    OperationStatus.COMMITTED: frozenset(),
    OperationStatus.ROLLEDBACK: frozenset(),
}
