"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from compensation_engine.calculators.engine import CompensationEngine
from compensation_engine.config import get_settings
from compensation_engine.database import init_db
from compensation_engine.payroll_config import PayrollConfig, load_payroll_config
from compensation_engine.services.payroll_run_service import PayrollRunService
from compensation_engine.services.structure_service import StructureService


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_tenant_id(
    x_tenant_id: Annotated[str | None, Header()] = None
) -> str:
    """Extract tenant ID from header."""
    if not x_tenant_id or not x_tenant_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )
    return x_tenant_id.strip()


@lru_cache(maxsize=1)
def get_payroll_config() -> PayrollConfig:
    """Payroll rules shared by every request.

    Read from ``PAYROLL_CONFIG_FILE`` when set, otherwise the built-in
    defaults (which carry no income tax slabs).
    """
    path = get_settings().payroll_config_file
    if path:
        return load_payroll_config(path)
    return PayrollConfig()


def get_compensation_engine(
    config: Annotated[PayrollConfig, Depends(get_payroll_config)],
) -> CompensationEngine:
    return CompensationEngine(config, engine_version=get_settings().engine_version)


DbSession = Annotated[AsyncSession, Depends(get_db_session)]
TenantId = Annotated[str, Depends(get_tenant_id)]
Config = Annotated[PayrollConfig, Depends(get_payroll_config)]
Engine = Annotated[CompensationEngine, Depends(get_compensation_engine)]


def get_structure_service(db: DbSession) -> StructureService:
    return StructureService(db)


def get_payroll_run_service(db: DbSession, engine: Engine) -> PayrollRunService:
    return PayrollRunService(db, engine, max_workers=get_settings().max_workers)


# Type aliases for cleaner dependency injection
Structures = Annotated[StructureService, Depends(get_structure_service)]
RunService = Annotated[PayrollRunService, Depends(get_payroll_run_service)]
