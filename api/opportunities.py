"""
JSON read API for arbitrage opportunities.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from core.models import Exchange
from core.orchestrator import OpportunityOrchestrator
from utils.time_utils import now_ms

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Global reference (set by server.py)
orchestrator: Optional[OpportunityOrchestrator] = None


def _internal_error(message: str, error: Exception) -> JSONResponse:
    logger.error(f"{message}: {error}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": message, "message": str(error)})


@router.get("/opportunities")
async def get_opportunities():
    """Opportunities for every period plus venue availability."""
    try:
        response = await orchestrator.get_opportunities()
    except Exception as e:
        return _internal_error("Failed to fetch opportunities", e)
    return response.to_wire()


@router.get("/coins")
async def get_coins():
    """Instruments listed on each venue."""
    try:
        response = await orchestrator.get_coins()
    except Exception as e:
        return _internal_error("Failed to fetch coins", e)
    return response.to_wire()


@router.get("/health")
async def health():
    return {
        "status": "ok",
        "timestamp": now_ms(),
        "lastUpdate": orchestrator.last_updated,
        "cache": orchestrator.cache_stats(),
    }


@router.get("/historical/{symbol}")
async def get_historical(symbol: str, long_exchange: Exchange = Exchange.LIGHTER):
    """Average net APRs of one direction over 7d, 30d and year to date."""
    try:
        aprs = await orchestrator.get_historical_aprs(symbol, long_exchange)
    except Exception as e:
        return _internal_error(f"Failed to fetch historical APRs for {symbol}", e)
    return {"symbol": symbol.upper(), "longExchange": long_exchange.value, **aprs.to_wire()}


@router.get("/historical")
async def get_historical_top(limit: int = Query(default=10, ge=1, le=50)):
    """Historical APRs for the best realtime opportunities, keyed by symbol."""
    try:
        realtime = orchestrator.cached_opportunities().realtime[:limit]
        results = await orchestrator.get_historical_aprs_for_symbols(
            (opp.symbol, opp.long_exchange) for opp in realtime
        )
    except Exception as e:
        return _internal_error("Failed to fetch historical APRs", e)
    return {symbol: aprs.to_wire() for symbol, aprs in results.items()}
