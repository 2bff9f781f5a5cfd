from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from signpay.db.init_db import get_db
from signpay.db.models import Base, MerchantModel
from signpay.main import app


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "orders.db"


@pytest.fixture
def sync_engine(db_path):
    """Synchronous engine on the same file, for seeding and assertions."""
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def client(db_path, sync_engine):
    # NullPool: TestClient runs each request on a fresh event loop
    async_engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    session_factory = async_sessionmaker(async_engine, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _add_merchant(sync_engine, public_pem: str, domain: str, status: str) -> int:
    with Session(sync_engine) as session:
        merchant = MerchantModel(name="Example Shop", public_key=public_pem, domain=domain, status=status)
        session.add(merchant)
        session.commit()
        return merchant.id


@pytest.fixture
def merchant_id(sync_engine, rsa_keys) -> int:
    return _add_merchant(sync_engine, rsa_keys.public_pem, "example.com", "alive")


@pytest.fixture
def frozen_merchant_id(sync_engine, rsa_keys) -> int:
    return _add_merchant(sync_engine, rsa_keys.public_pem, "example.com", "frozen")
