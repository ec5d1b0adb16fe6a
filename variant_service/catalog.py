"""
Variant Service — Product Catalog クライアント

バリアント作成時に、対象商品がカタログに存在するかを確認する。
Saga (prepare / commit / rollback) からは呼ばない。
"""

import logging

import httpx

from .errors import InternalError, NotFoundError

logger = logging.getLogger(__name__)


class ProductCatalogClient:
    def __init__(
        self,
        base_url: str | None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.transport = transport
        self.timeout = timeout

    async def ensure_product_exists(self, product_id: str) -> None:
        """
        商品の存在を確認する。

        PRODUCT_SERVICE_URL が未設定の場合は確認を省略する。
        """
        if not self.base_url:
            return
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self.transport
        ) as client:
            try:
                resp = await client.get(f"{self.base_url}/api/products/{product_id}")
            except httpx.HTTPError as e:
                logger.error("Product service unreachable: %s", e)
                raise InternalError("Product service unavailable") from e

        if resp.status_code == 404:
            raise NotFoundError("Product not found")
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("Product service error: %s", e)
            raise InternalError("Product service unavailable") from e
        if not resp.content or not resp.json():
            raise NotFoundError("Product not found")
