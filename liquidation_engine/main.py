"""
Liquidation Engine - FastAPI Application

Main entry point. Builds the engine, runs the expiry sweeper and exposes
the REST API for liquidations, compliance review, providers, assets and
quotes.
"""

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from liquidation_engine import __version__
from liquidation_engine.api.asset_routes import router as asset_router
from liquidation_engine.api.compliance_routes import router as compliance_router
from liquidation_engine.api.dependencies import current_engine, get_engine
from liquidation_engine.api.liquidation_routes import router as liquidation_router
from liquidation_engine.api.provider_routes import router as provider_router
from liquidation_engine.api.quote_routes import router as quote_router
from liquidation_engine.engine import LiquidationEngine
from liquidation_engine.config import Settings, get_settings, get_settings_dep
from liquidation_engine.errors import LiquidationError
from liquidation_engine.logging import get_in_memory_logs, get_logger, setup_logging
from liquidation_engine.runtime.event_bus import Event, EventType

# Setup logging
setup_logging(level=get_settings().log_level, json_output=get_settings().json_logs)
logger = get_logger(__name__)


# =============================================================================
# Response Models
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    time: str
    uptime_seconds: float
    sweeper: dict[str, Any] = {}


class ConfigResponse(BaseModel):
    """Configuration response (redacted)."""

    env: str
    data_dir: str
    audit_enabled: bool
    price_source: str
    quote_validity_minutes: int
    provider_ranking: list[str]


# =============================================================================
# Application State
# =============================================================================


class AppState:
    """Application state container."""

    def __init__(self) -> None:
        self.start_time: datetime = datetime.now(UTC)


state = AppState()


# =============================================================================
# Lifecycle
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    logger.info("Starting Liquidation Engine v%s (%s)", __version__, settings.env.value)
    logger.info("Data directory: %s", settings.data_dir)
    logger.info("Server: http://%s:%d", settings.host, settings.port)

    engine = current_engine() or get_engine(settings)
    await engine.start()

    await engine.event_bus.publish(Event(type=EventType.ENGINE_STARTED))

    yield

    # Shutdown
    logger.info("Shutting down Liquidation Engine")
    await engine.stop()
    await engine.event_bus.publish(Event(type=EventType.ENGINE_STOPPED))


# =============================================================================
# FastAPI Application
# =============================================================================


app = FastAPI(
    title="Liquidation Engine",
    description="Converts held assets into fiat, stablecoin or crypto with compliance screening",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(LiquidationError)
async def liquidation_error_handler(request: Request, exc: LiquidationError) -> JSONResponse:
    """Render engine exceptions with their HTTP status."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": {
                "reason_code": exc.reason_code.value if exc.reason_code else None,
                "message": str(exc),
            }
        },
    )


# Include API routers
app.include_router(liquidation_router)
app.include_router(compliance_router)
app.include_router(provider_router)
app.include_router(asset_router)
app.include_router(quote_router)


# =============================================================================
# REST Endpoints
# =============================================================================


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """
    Health check endpoint.

    Returns current status, version, uptime and sweeper state.
    """
    now = datetime.now(UTC)
    uptime = (now - state.start_time).total_seconds()
    engine = current_engine()

    return HealthResponse(
        status="healthy" if engine is not None else "starting",
        version=__version__,
        time=now.isoformat(),
        uptime_seconds=round(uptime, 2),
        sweeper=engine.sweeper.get_status() if engine is not None else {},
    )


@app.get("/config", response_model=ConfigResponse)
async def config(settings: Settings = Depends(get_settings_dep)) -> ConfigResponse:
    """
    Get current configuration (redacted).

    The price source URL and API key are not exposed.
    """
    return ConfigResponse(
        env=settings.env.value,
        data_dir=str(settings.data_dir),
        audit_enabled=settings.audit_enabled,
        price_source="http" if settings.price_source_url else "simulated",
        quote_validity_minutes=settings.quote_validity_minutes,
        provider_ranking=list(settings.provider_ranking),
    )


@app.get("/events")
async def events(
    event_type: EventType | None = None,
    limit: int = 50,
    engine: LiquidationEngine = Depends(get_engine),
) -> list[dict[str, Any]]:
    """Recent engine events, oldest first."""
    return [e.to_dict() for e in engine.event_bus.recent(event_type=event_type, limit=limit)]


@app.get("/logs")
async def logs(level: str = "INFO", limit: int = 50) -> list[dict[str, Any]]:
    """Recent log records from the in-memory buffer."""
    return get_in_memory_logs(level=level, limit=limit)


@app.get("/")
async def root() -> dict[str, Any]:
    """Root endpoint with API info."""
    return {
        "name": "Liquidation Engine",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Run the server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "liquidation_engine.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.env.value == "development",
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
