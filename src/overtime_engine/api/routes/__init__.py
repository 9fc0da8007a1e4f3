"""API routes."""

from overtime_engine.api.routes.health import router as health_router
from overtime_engine.api.routes.overtime import router as overtime_router
from overtime_engine.api.routes.time_bank import router as time_bank_router

__all__ = ["health_router", "overtime_router", "time_bank_router"]
