"""Pytest fixtures for the variant service (SQLite file database per test)."""

import json

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from variant_service import variant_store
from variant_service.tables import init_schema

P1 = "64f0c0ffee00000000000001"
P2 = "64f0c0ffee00000000000002"
P3 = "64f0c0ffee00000000000003"


class RecordingRedis:
    """Stands in for the Redis connection; keeps every published message."""

    def __init__(self) -> None:
        self.published: list[tuple[str, dict]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, json.loads(message)))
        return 1

    @property
    def event_types(self) -> list[str]:
        return [payload["event_type"] for _, payload in self.published]


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'variants.db'}")
    await init_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def redis():
    return RecordingRedis()


@pytest.fixture
def seed(session_factory):
    """Insert variants for a product and return them (store dicts)."""

    async def _seed(product_id: str, entries: list[dict]) -> list[dict]:
        async with session_factory() as session:
            async with session.begin():
                return await variant_store.insert_variants(session, product_id, entries)

    return _seed


@pytest.fixture
def fetch(session_factory):
    """Read a variant back by id."""

    async def _fetch(variant_id: str) -> dict:
        async with session_factory() as session:
            return await variant_store.get(session, variant_id)

    return _fetch


@pytest.fixture
async def scenario_variants(seed):
    """P1 has variants priced 100 and 200, P2 one priced 50; all at 0% discount."""
    p1 = await seed(
        P1,
        [
            {"size": "50ml", "price": 100, "stock": 5},
            {"size": "100ml", "price": 200, "stock": 8},
        ],
    )
    p2 = await seed(P2, [{"size": "30ml", "price": 50, "stock": 3}])
    return p1 + p2
