"""
Variant Service — エラー定義

各例外は kind（機械判定用の分類）と HTTP ステータスを持ち、
main.py の例外ハンドラで {"error": kind, "message": message} に変換される。
"""


class VariantServiceError(Exception):
    """サービス例外の基底クラス"""

    kind = "internal"
    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class InvalidArgumentError(VariantServiceError):
    """入力の形式不正・範囲外"""

    kind = "invalid_argument"
    status_code = 400


class NotFoundError(VariantServiceError):
    """バリアント・商品・オペレーションが存在しない"""

    kind = "not_found"
    status_code = 404


class ConflictError(VariantServiceError):
    """重複、または許可されていない status 遷移"""

    kind = "conflict"
    status_code = 409


class InsufficientStockError(ConflictError):
    """在庫の減算で 0 未満になる（対象の variant_id を応答に含める）"""

    kind = "insufficient_stock"

    def __init__(self, variant_id: str, available: int, requested: int) -> None:
        self.variant_id = variant_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Not enough stock to reduce for variant: {variant_id} "
            f"(requested={requested}, available={available})"
        )

    def to_dict(self) -> dict:
        return {**super().to_dict(), "variantId": self.variant_id}


class UnauthorizedError(VariantServiceError):
    """認証情報がない、または不正"""

    kind = "unauthorized"
    status_code = 401


class ForbiddenError(UnauthorizedError):
    """認証済みだが権限がない"""

    kind = "forbidden"
    status_code = 403


class InternalError(VariantServiceError):
    """永続化層の予期しない失敗"""

    kind = "internal"
    status_code = 500
