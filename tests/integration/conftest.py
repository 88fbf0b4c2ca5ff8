"""Integration test fixtures with a real database."""

import json
from collections.abc import AsyncGenerator, Generator
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from compensation_engine.api.app import create_app
from compensation_engine.api.dependencies import get_db_session, get_payroll_config
from compensation_engine.calculators.engine import CompensationEngine
from compensation_engine.config import get_settings
from compensation_engine.database import create_tables
from compensation_engine.payroll_config import PayrollConfig
from compensation_engine.services import PayrollRunService, StructureService

TENANT_ID = "acme"
OTHER_TENANT_ID = "globex"


@pytest_asyncio.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite database with the schema created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'compensation.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Get database session for integration tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def structure_service(db_session) -> StructureService:
    return StructureService(db_session)


@pytest.fixture
def run_service(db_session) -> PayrollRunService:
    return PayrollRunService(
        db_session, CompensationEngine(PayrollConfig(), engine_version="test"), max_workers=2
    )


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, with sessions from the test database."""
    app = create_app()

    async def override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def payroll_config_file(tmp_path, monkeypatch) -> Generator[None, None, None]:
    """Serve income tax slabs to the API from a PAYROLL_CONFIG_FILE."""
    path = tmp_path / "payroll.json"
    path.write_text(json.dumps({
        "tax": {
            "slabs": [
                {"min": 0, "max": 300000, "rate": "0"},
                {"min": 300000, "max": 700000, "rate": "0.05"},
                {"min": 700000, "max": 1000000, "rate": "0.10"},
                {"min": 1000000, "max": None, "rate": "0.20"},
            ],
        },
    }))
    monkeypatch.setenv("PAYROLL_CONFIG_FILE", str(path))
    get_settings.cache_clear()
    get_payroll_config.cache_clear()
    yield
    get_settings.cache_clear()
    get_payroll_config.cache_clear()


@pytest.fixture
def headers() -> dict[str, str]:
    return {"X-Tenant-ID": TENANT_ID}


def structure_payload(owner_id: str, annual_ctc: str = "600000") -> dict[str, Any]:
    """Basic 40% of CTC, HRA 50% of Basic, Special Allowance, employer PF."""
    return {
        "owner_id": owner_id,
        "annual_ctc": annual_ctc,
        "mode": "AUTO",
        "components": [
            {
                "id": "basic",
                "name": "Basic Salary",
                "category": "EARNING",
                "calculation_mode": "PERCENT_OF_CTC",
                "value": "40",
                "is_basic": True,
                "consider_for_pf": True,
            },
            {
                "id": "hra",
                "name": "House Rent Allowance",
                "category": "EARNING",
                "calculation_mode": "PERCENT_OF_BASIC",
                "value": "50",
            },
            {
                "id": "special",
                "name": "Special Allowance",
                "category": "EARNING",
                "calculation_mode": "FIXED",
                "is_remainder_component": True,
            },
            {
                "id": "employer_pf",
                "name": "Employer PF",
                "category": "EMPLOYER_CONTRIBUTION",
                "calculation_mode": "FIXED",
                "value": "1800",
                "statutory": "PROVIDENT_FUND",
                "prorate": False,
            },
        ],
    }


def amount(value: Any) -> Decimal:
    """Decimal from a JSON amount (serialized as a string)."""
    return Decimal(str(value))
