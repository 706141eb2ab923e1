"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payrun_engine import __version__
from payrun_engine.api.routes import health_router, payroll_runs_router, payslips_router
from payrun_engine.calculators.types import FactsUnavailableError
from payrun_engine.config import Settings, get_settings
from payrun_engine.database import dispose_db, init_db
from payrun_engine.logging_config import configure_logging
from payrun_engine.services.payroll_run_service import (
    PayrollProviders,
    RunAlreadyProcessingError,
)
from payrun_engine.services.repository import DuplicateRunError, PayrollRunNotFoundError
from payrun_engine.services.state_machine import InvalidTransitionError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    owns_db = app.state.session_factory is None
    if owns_db:
        _, session_factory = init_db()
        app.state.session_factory = session_factory
    if app.state.providers is None:
        app.state.providers = PayrollProviders.from_database(
            app.state.session_factory, app.state.settings
        )
    yield
    # Shutdown
    if owns_db:
        await dispose_db()


def _error(status_code: int, exc: Exception, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "code": code})


def create_app(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    providers: PayrollProviders | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``session_factory`` and ``providers`` default to the configured database
    at startup; tests inject their own.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Payroll Run Engine API",
        description="Monthly payroll runs: payslip computation and run lifecycle",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.providers = providers
    if session_factory is not None and providers is None:
        app.state.providers = PayrollProviders.from_database(session_factory, settings)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(PayrollRunNotFoundError)
    async def not_found_handler(request: Request, exc: PayrollRunNotFoundError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, exc, "RUN_NOT_FOUND")

    @app.exception_handler(DuplicateRunError)
    async def duplicate_handler(request: Request, exc: DuplicateRunError) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, exc, "DUPLICATE_RUN")

    @app.exception_handler(RunAlreadyProcessingError)
    async def processing_handler(
        request: Request, exc: RunAlreadyProcessingError
    ) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, exc, "RUN_ALREADY_PROCESSING")

    @app.exception_handler(InvalidTransitionError)
    async def transition_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, exc, "INVALID_TRANSITION")

    @app.exception_handler(FactsUnavailableError)
    async def facts_unavailable_handler(
        request: Request, exc: FactsUnavailableError
    ) -> JSONResponse:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc, "FACTS_UNAVAILABLE")

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
    app.include_router(payroll_runs_router, prefix="/api/v1")
    app.include_router(payslips_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
