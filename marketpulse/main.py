"""FastAPI application - minimal setup with dependency injection."""
from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketpulse.api.dependencies import Services, build_default_services
from marketpulse.api.routes import alerts, health, market
from marketpulse.api.websocket.realtime import router as ws_router
from marketpulse.config import app_config, market_data_config
from marketpulse.domain.errors import PersistenceError
from marketpulse.infrastructure.scheduler import MarketScheduler

logging.basicConfig(
    level=getattr(logging, app_config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Map storage outages to 503 on every REST route."""

    @app.exception_handler(PersistenceError)
    async def handle_persistence_error(_request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error(f"Persistence failure: {exc}")
        return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


def create_app(
    services: Optional[Services] = None,
    enable_scheduler: bool = True,
) -> FastAPI:
    """Build the app; tests pass prepared services and disable the scheduler."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application startup and shutdown."""
        logger.info("Starting application...")
        app.state.services = services or build_default_services()

        scheduler = None
        if enable_scheduler:
            wired = app.state.services
            scheduler = MarketScheduler(
                alert_engine=wired.alert_engine,
                alert_service=wired.alert_service,
                broadcast=wired.broadcast,
                market_data=wired.market_data,
                tracked_symbols=market_data_config.TRACKED_SYMBOLS,
            )
            scheduler.start()
        app.state.scheduler = scheduler

        logger.info("Application started")
        yield

        # Shutdown
        logger.info("Shutting down...")
        if scheduler is not None:
            scheduler.shutdown()
        await app.state.services.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="MarketPulse API",
        description="Market data aggregation, real-time subscriptions and price alerts",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # Register routes
    app.include_router(health.router)
    app.include_router(market.router)
    app.include_router(alerts.router)
    app.include_router(ws_router)
    return app


app = create_app()
