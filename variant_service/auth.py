"""
Variant Service — 認証・認可

2 種類の呼び出し元を区別する:

- 管理者 (admin): Authorization: Bearer <JWT>
  ペイロードの userId / role から AuthContext を組み立てる。
- 内部サービス (Product Catalog Service など): X-Internal-Key ヘッダー
  エンドユーザー認証とは独立した共有シークレットで照合する。
"""

import logging
import secrets
from dataclasses import dataclass
from enum import Enum

import jwt

from .errors import ForbiddenError, UnauthorizedError

logger = logging.getLogger(__name__)

INTERNAL_KEY_HEADER = "X-Internal-Key"


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    role: Role


def decode_access_token(token: str, secret: str) -> AuthContext:
    if not secret:
        raise UnauthorizedError("Authentication is not configured")
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError as e:
        raise UnauthorizedError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise UnauthorizedError("Invalid token") from e

    user_id = payload.get("userId")
    try:
        role = Role(payload.get("role"))
    except ValueError as e:
        raise UnauthorizedError("Invalid token") from e
    if not user_id:
        raise UnauthorizedError("Invalid token")
    return AuthContext(user_id=str(user_id), role=role)


def authenticate(authorization: str | None, secret: str) -> AuthContext:
    """Authorization ヘッダーから AuthContext を取り出す。"""
    if not authorization:
        raise UnauthorizedError("No token provided")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise UnauthorizedError("No token provided")
    return decode_access_token(token.strip(), secret)


def require_admin_role(ctx: AuthContext) -> AuthContext:
    if ctx.role is not Role.ADMIN:
        logger.warning("Unauthorized access by user=%s role=%s", ctx.user_id, ctx.role.value)
        raise ForbiddenError("Unauthorized access")
    return ctx


def verify_internal_key(presented: str | None, expected: str) -> None:
    """共有シークレットを定数時間で比較する。未設定なら常に拒否。"""
    if not expected or not presented or not secrets.compare_digest(
        presented.encode(), expected.encode()
    ):
        logger.warning("Rejected internal call with invalid %s", INTERNAL_KEY_HEADER)
        raise ForbiddenError("Unauthorized")
