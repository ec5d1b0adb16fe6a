"""Tests for the auth collaborators and the product catalog client."""

import time

import httpx
import jwt
import pytest

from variant_service.auth import (
    AuthContext,
    Role,
    authenticate,
    require_admin_role,
    verify_internal_key,
)
from variant_service.catalog import ProductCatalogClient
from variant_service.errors import (
    ForbiddenError,
    InternalError,
    NotFoundError,
    UnauthorizedError,
)

SECRET = "test-access-token-secret-0123456789abcdef"


def _token(payload: dict, secret: str = SECRET) -> str:
    return jwt.encode(payload, secret, algorithm="HS256")


def test_authenticate_builds_context():
    ctx = authenticate(f"Bearer {_token({'userId': 'u1', 'role': 'admin'})}", SECRET)
    assert ctx == AuthContext(user_id="u1", role=Role.ADMIN)


@pytest.mark.parametrize(
    "header",
    [
        None,
        "",
        "Token abc",
        "Bearer ",
        f"Bearer {_token({'userId': 'u1', 'role': 'admin'}, secret='another-secret-0123456789abcdefgh')}",
        f"Bearer {_token({'userId': 'u1', 'role': 'superuser'})}",
        f"Bearer {_token({'role': 'admin'})}",
    ],
)
def test_authenticate_rejects(header):
    with pytest.raises(UnauthorizedError):
        authenticate(header, SECRET)


def test_expired_token():
    token = _token({"userId": "u1", "role": "admin", "exp": int(time.time()) - 60})
    with pytest.raises(UnauthorizedError, match="expired"):
        authenticate(f"Bearer {token}", SECRET)


def test_unconfigured_secret_rejects_everything():
    with pytest.raises(UnauthorizedError):
        authenticate(f"Bearer {_token({'userId': 'u1', 'role': 'admin'})}", "")


def test_require_admin_role():
    admin = AuthContext(user_id="u1", role=Role.ADMIN)
    assert require_admin_role(admin) is admin
    with pytest.raises(ForbiddenError):
        require_admin_role(AuthContext(user_id="u2", role=Role.USER))


def test_internal_key():
    verify_internal_key("s3cret", "s3cret")
    for presented, expected in [(None, "s3cret"), ("wrong", "s3cret"), ("", ""), ("x", "")]:
        with pytest.raises(ForbiddenError):
            verify_internal_key(presented, expected)


def _catalog(handler) -> ProductCatalogClient:
    return ProductCatalogClient("http://catalog.test/", transport=httpx.MockTransport(handler))


async def test_catalog_skips_check_when_unconfigured():
    await ProductCatalogClient(None).ensure_product_exists("p1")


async def test_catalog_product_exists():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(200, json={"product": {"id": "p1"}})

    await _catalog(handler).ensure_product_exists("p1")
    assert seen == ["/api/products/p1"]


async def test_catalog_missing_product():
    client = _catalog(lambda request: httpx.Response(404, json={"message": "nope"}))
    with pytest.raises(NotFoundError):
        await client.ensure_product_exists("p1")


async def test_catalog_server_error():
    client = _catalog(lambda request: httpx.Response(503))
    with pytest.raises(InternalError):
        await client.ensure_product_exists("p1")


async def test_catalog_unreachable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(InternalError):
        await _catalog(handler).ensure_product_exists("p1")
