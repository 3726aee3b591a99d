"""Shared fixtures: on-disk SQLite per test and a recording sleep."""

import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from catalog_sync.db.models import Base
from catalog_sync.db.repository import ProductRepository


@pytest.fixture
async def session_factory(tmp_path):
    """Fresh database with all tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog_sync.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def repository(session_factory):
    return ProductRepository(session_factory)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def fake_sleep():
    return RecordingSleep()
