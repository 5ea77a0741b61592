"""Shared fixtures: a file-backed SQLite database rebuilt for every test."""
import os
import tempfile

# Configure before promo_engine is imported: settings are read once at import time
_db_dir = tempfile.mkdtemp(prefix="promo-engine-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_db_dir, 'promotions.db')}"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"

import pytest
from httpx import AsyncClient, ASGITransport

from promo_engine.database import Base, engine, async_session_factory, import_models
from promo_engine.core.security import create_access_token, ADMIN_ROLE


@pytest.fixture
async def db():
    """Fresh schema and a session on it."""
    import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
async def client(db):
    """HTTP client bound to the app. Setup data must be committed before requests."""
    from promo_engine.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_headers():
    token = create_access_token("00000000-0000-0000-0000-000000000001", additional_claims={"role": ADMIN_ROLE})
    return {"Authorization": f"Bearer {token}"}


def customer_headers(customer_id) -> dict:
    return {"Authorization": f"Bearer {create_access_token(customer_id)}"}


@pytest.fixture
def auth_for():
    """Bearer headers for a customer id."""
    return customer_headers
