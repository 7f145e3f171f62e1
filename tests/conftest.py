"""Pytest configuration and fixtures for lendcore tests.

Provides common fixtures for testing.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from lendcore.config import reset_config
from lendcore.db.models import Base
from lendcore.models import DataType, ExtractedItem, KnowledgeOwner


@pytest.fixture
def test_project_id() -> str:
    """Test project ID."""
    return "test-project"


@pytest.fixture
def project_owner(test_project_id: str) -> KnowledgeOwner:
    """Knowledge owner for the test project."""
    return KnowledgeOwner.project(test_project_id)


@pytest.fixture
def client_owner() -> KnowledgeOwner:
    """Knowledge owner for a test client."""
    return KnowledgeOwner.client("test-client")


@pytest.fixture
def appraisal_items() -> list[ExtractedItem]:
    """Line items as extracted from a development appraisal."""
    return [
        ExtractedItem(original_name="Stamp Duty", value=125000, category="Site Costs"),
        ExtractedItem(original_name="Legal Fees", value="£15,000", category="Site Costs"),
        ExtractedItem(original_name="Build Costs", value=2500000, category="Construction Costs"),
        ExtractedItem(original_name="Contingency", value=0.05, data_type=DataType.PERCENTAGE, category="Construction Costs"),
        ExtractedItem(original_name="Widget Levy", value=1200, category="Other"),
    ]


@pytest_asyncio.fixture()
async def db_session() -> AsyncSession:
    """Create in-memory database for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    SessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        await session.close()
        await engine.dispose()


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Set up test environment variables."""
    # Set DATABASE_URL for config tests
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    reset_config()
    yield
    reset_config()
