"""
FastAPI application for the Funding Arbitrage Scanner.

Usage:
    python main.py

Or with uvicorn:
    uvicorn server:create_app --factory --host 0.0.0.0 --port 3001
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import opportunities, stream
from config import Settings, get_settings
from core.broadcaster import OpportunityBroadcaster
from core.exchange_client import BaseExchangeClient
from core.historical_funding import HistoricalAggregator
from core.hyperliquid_client import HyperliquidClient
from core.lighter_client import LighterClient
from core.orchestrator import OpportunityOrchestrator

logger = logging.getLogger(__name__)


def build_orchestrator(
    settings: Settings,
    lighter: Optional[BaseExchangeClient] = None,
    hyperliquid: Optional[BaseExchangeClient] = None,
) -> OpportunityOrchestrator:
    """Wire the venue clients, aggregator and caches from settings."""
    lighter = lighter or LighterClient(
        base_urls=settings.lighter_base_urls,
        timeout=settings.request_timeout,
        history_timeout=settings.history_request_timeout,
    )
    hyperliquid = hyperliquid or HyperliquidClient(
        rest_url=settings.hyperliquid_rest_url,
        timeout=settings.request_timeout,
        min_request_interval=settings.hyperliquid_min_request_interval,
    )
    aggregator = HistoricalAggregator(
        lighter,
        hyperliquid,
        request_delay=settings.history_request_delay,
        fetch_timeout=settings.history_request_timeout,
    )
    return OpportunityOrchestrator(
        lighter,
        hyperliquid,
        aggregator,
        realtime_ttl=settings.realtime_ttl,
        historical_ttl=settings.historical_ttl,
        symbol_history_ttl=settings.symbol_history_ttl,
        fetch_timeout=settings.request_timeout * 2,
        sync_refresh_timeout=settings.sync_refresh_timeout,
        symbol_request_delay=settings.symbol_request_delay,
    )


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[OpportunityOrchestrator] = None,
    start_timers: bool = True,
) -> FastAPI:
    """
    Create the FastAPI app.

    Args:
        settings: Application settings, loaded from the environment if omitted
        orchestrator: Prebuilt orchestrator, built from settings if omitted
        start_timers: Run the proactive refresh and broadcast timers
    """
    settings = settings or get_settings()
    orchestrator = orchestrator or build_orchestrator(settings)
    broadcaster = OpportunityBroadcaster(
        interval=settings.broadcast_interval,
        send_timeout=settings.broadcast_send_timeout,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting Funding Arbitrage Scanner ({settings.environment})...")

        # Global references for the routers
        opportunities.orchestrator = orchestrator
        stream.orchestrator = orchestrator
        stream.broadcaster = broadcaster

        # Start from empty freshness so the first request refetches
        orchestrator.clear_cache()

        if start_timers:
            orchestrator.start()
            broadcaster.start(orchestrator.cached_opportunities)

        logger.info(f"✅ Server ready on {settings.host}:{settings.port}")

        yield

        logger.info("Shutting down...")
        await broadcaster.close()
        await orchestrator.stop()
        await orchestrator.lighter.close()
        await orchestrator.hyperliquid.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="Funding Arbitrage Scanner",
        description="Funding rate arbitrage opportunities between Lighter and Hyperliquid",
        version="1.0.0",
        lifespan=lifespan,
    )

    if settings.is_production:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.origin_list,
            allow_origin_regex=r"https://.*\.onrender\.com",
            allow_methods=["GET"],
            allow_headers=["*"],
        )
    else:
        app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    app.include_router(opportunities.router)
    app.include_router(stream.router)

    @app.get("/health")
    async def health_check():
        """Liveness probe."""
        return {"status": "healthy", "clients": broadcaster.subscriber_count}

    return app
