"""
WebSocket push stream.

Each client gets the cached opportunities immediately on connect and then
every broadcast interval. Messages from clients are read and ignored.
"""
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from core.broadcaster import OpportunityBroadcaster
from core.orchestrator import OpportunityOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

# Global references (set by server.py)
orchestrator: Optional[OpportunityOrchestrator] = None
broadcaster: Optional[OpportunityBroadcaster] = None


@router.websocket("/ws")
async def opportunities_stream(websocket: WebSocket):
    await websocket.accept()
    broadcaster.register(websocket)
    try:
        await broadcaster.send(websocket, orchestrator.cached_opportunities())
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning(f"WebSocket error: {e}")
    finally:
        broadcaster.unregister(websocket)
