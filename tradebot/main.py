"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tradebot.config import settings
from tradebot.container import TradingServices, build_services, shutdown, start_background_jobs
from tradebot.errors import TradingError
from tradebot.utils.logging import setup_logging
from tradebot.api import bot, trades, strategies, risk, system
from tradebot.api.deps import trading_error_handler


def create_app(services: TradingServices | None = None, run_jobs: bool = True) -> FastAPI:
    """Build the app. Pass ``services`` to reuse prebuilt services (tests)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        setup_logging()
        app.state.services = services or build_services(settings)
        if run_jobs:
            start_background_jobs(app.state.services)

        yield

        await shutdown(app.state.services)

    app = FastAPI(
        title="Trading Bot",
        description="RSI + EMA strategy bot with risk controls",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(TradingError, trading_error_handler)

    # Mount routers
    app.include_router(bot.router)
    app.include_router(trades.router)
    app.include_router(strategies.router)
    app.include_router(risk.router)
    app.include_router(system.router)
    return app


app = create_app()
