"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from overtime_engine.api.routes import health_router, overtime_router, time_bank_router
from overtime_engine.config import get_settings
from overtime_engine.database import dispose_db, init_db
from overtime_engine.logging_config import configure_logging
from overtime_engine.services.approval_gate import (
    ApprovalPermissionError,
    AuthorizationNotFoundError,
)
from overtime_engine.services.overtime_settings import SettingsValidationError
from overtime_engine.services.state_machine import InvalidTransitionError
from overtime_engine.services.time_bank_requests import (
    DuplicateRequestError,
    InsufficientBalanceError,
    TimeBankRequestNotFoundError,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    configure_logging(get_settings().log_level)
    init_db()
    yield
    await dispose_db()


def _error(status_code: int, detail: str, code: str, **context) -> JSONResponse:
    content: dict = {"detail": detail, "code": code}
    if context:
        content["context"] = context
    return JSONResponse(status_code=status_code, content=content)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Overtime Engine API",
        description="Overtime detection, approval and time-bank ledger",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(AuthorizationNotFoundError)
    async def authorization_not_found_handler(
        request: Request, exc: AuthorizationNotFoundError
    ) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, str(exc), "AUTHORIZATION_NOT_FOUND")

    @app.exception_handler(TimeBankRequestNotFoundError)
    async def request_not_found_handler(
        request: Request, exc: TimeBankRequestNotFoundError
    ) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, str(exc), "REQUEST_NOT_FOUND")

    @app.exception_handler(ApprovalPermissionError)
    async def permission_handler(request: Request, exc: ApprovalPermissionError) -> JSONResponse:
        return _error(status.HTTP_403_FORBIDDEN, str(exc), "NOT_AN_APPROVER")

    @app.exception_handler(InvalidTransitionError)
    async def transition_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:
        return _error(
            status.HTTP_409_CONFLICT,
            str(exc),
            "INVALID_TRANSITION",
            from_status=exc.from_status,
            to_status=exc.to_status,
        )

    @app.exception_handler(DuplicateRequestError)
    async def duplicate_handler(request: Request, exc: DuplicateRequestError) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, str(exc), "DUPLICATE_REQUEST")

    @app.exception_handler(InsufficientBalanceError)
    async def balance_handler(request: Request, exc: InsufficientBalanceError) -> JSONResponse:
        return _error(
            status.HTTP_400_BAD_REQUEST,
            str(exc),
            "INSUFFICIENT_BALANCE",
            balance=exc.balance,
            requested=exc.requested,
        )

    @app.exception_handler(SettingsValidationError)
    async def settings_handler(request: Request, exc: SettingsValidationError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc), "INVALID_SETTINGS", field=exc.field)

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "An unexpected error occurred",
            "INTERNAL_ERROR",
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(overtime_router, prefix="/api/v1")
    app.include_router(time_bank_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
