"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, rebuilt for each test
- Local object storage rooted in a per-test temp directory
- Form builders for the common field shapes
- HTTPX AsyncClient bound to the ASGI app
"""
import os
import uuid
from typing import AsyncGenerator, Generator

# Configure before any formengine import reads settings.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["ENV"] = "test"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from formengine.core.config import settings
from formengine.db import models  # noqa: F401
from formengine.db.base import Base
from formengine.db.session import SessionLocal, engine
from tests.factories import make_field


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Fresh schema per test.

    The in-memory database is shared by every session (StaticPool), so code
    that opens its own ``SessionLocal`` sees the same data.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def local_storage(tmp_path, monkeypatch):
    """Point local object storage at a temp directory."""
    monkeypatch.setattr(settings, "STORAGE_BACKEND", "local")
    monkeypatch.setattr(settings, "LOCAL_STORAGE_PATH", str(tmp_path / "files"))
    return tmp_path / "files"


# =============================================================================
# Identity
# =============================================================================


@pytest.fixture
def company_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def user_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def auth_headers(company_id: str, user_id: str) -> dict[str, str]:
    return {"X-Company-Id": company_id, "X-User-Id": user_id, "X-User-Role": "admin"}


# =============================================================================
# Form builders
# =============================================================================


@pytest.fixture
def contact_fields():
    return [
        make_field("short_text", "name", label="Name", required=True),
        make_field("email", "email", label="Email", required=True),
        make_field("number", "age", label="Age", min=0, max=130),
        make_field(
            "dropdown",
            "plan",
            label="Plan",
            options=[
                {"label": "Basic", "value": "basic"},
                {"label": "Pro", "value": "pro"},
            ],
        ),
    ]


# =============================================================================
# HTTP Client
# =============================================================================


@pytest.fixture
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    from formengine.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
