"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from compensation_engine import __version__
from compensation_engine.api.routes import health_router, payroll_runs_router, structures_router
from compensation_engine.calculators.errors import (
    CompensationError,
    ComponentLockedError,
    DuplicateRunError,
    RunLockedError,
    RunNotFoundError,
)
from compensation_engine.config import get_settings
from compensation_engine.database import create_tables, dispose_db, init_db
from compensation_engine.services.state_machine import InvalidTransitionError

logger = logging.getLogger(__name__)

CONFLICT_ERRORS = (
    InvalidTransitionError,
    RunLockedError,
    DuplicateRunError,
    ComponentLockedError,
)


def status_for_error(exc: CompensationError) -> int:
    """HTTP status for an engine error."""
    if isinstance(exc, RunNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, CONFLICT_ERRORS):
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    engine, _ = init_db()
    if get_settings().debug:
        await create_tables(engine)
    yield
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Compensation Engine API",
        description="CTC decomposition and payroll calculation",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(CompensationError)
    async def compensation_error_handler(
        request: Request, exc: CompensationError
    ) -> JSONResponse:
        """Map engine errors to their HTTP status."""
        return JSONResponse(
            status_code=status_for_error(exc),
            content={"detail": str(exc), "code": exc.code, "key": exc.key},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(structures_router, prefix="/api/v1")
    app.include_router(payroll_runs_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
