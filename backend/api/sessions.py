"""
Sessions API
Live block sessions, load emitters and window lookups.

Endpoints:
    POST   /api/sessions/{simulator_id}               → Start watching a simulator
    DELETE /api/sessions/{simulator_id}               → Stop watching
    GET    /api/sessions                              → List sessions
    GET    /api/sessions/{simulator_id}               → Connection status + current block
    POST   /api/sessions/{simulator_id}/refresh       → Force a pull refresh
    GET    /api/sessions/{simulator_id}/history       → Closed blocks from the EMS backend
    POST   /api/emitters/{simulator_id}/start         → Start auto/manual emitter
    POST   /api/emitters/{simulator_id}/stop          → Stop emitter
    POST   /api/emitters/{simulator_id}/power         → Set manual power
    GET    /api/emitters/{simulator_id}               → Emitter stats
    GET    /api/blocks/window                         → Window containing a timestamp
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from config import get_settings
from core.errors import FetchError
from core.window import format_window, window_for
from services import get_session_manager

router = APIRouter(tags=["Sessions"])


class StartSessionRequest(BaseModel):
    simulator_name: Optional[str] = None


class StartEmitterRequest(BaseModel):
    mode: str = Field(default="auto", pattern="^(auto|manual)$")
    base_kw: float = Field(default=10.0, ge=0)
    volatility_pct: float = Field(default=10.0, ge=0, le=100)
    fast_forward: bool = False
    simulator_name: Optional[str] = None


class PowerRequest(BaseModel):
    power_kw: float = Field(..., ge=0)


# =============================================================================
# Sessions
# =============================================================================

@router.post("/sessions/{simulator_id}")
async def start_session(simulator_id: str, request: Optional[StartSessionRequest] = None):
    manager = get_session_manager()
    session = await manager.start(simulator_id, request.simulator_name if request else None)
    return {"status": "watching", **session.to_dict()}


@router.delete("/sessions/{simulator_id}")
async def stop_session(simulator_id: str):
    if not await get_session_manager().stop(simulator_id):
        raise HTTPException(404, f"No session for simulator: {simulator_id}")
    return {"status": "stopped", "simulator_id": simulator_id}


@router.get("/sessions")
async def list_sessions():
    sessions = get_session_manager().sessions()
    return {
        "count": len(sessions),
        "sessions": [
            {"simulator_id": s.simulator_id, "connection": s.status.to_dict()} for s in sessions
        ],
    }


@router.get("/sessions/{simulator_id}")
async def get_session(simulator_id: str):
    session = get_session_manager().get(simulator_id)
    if session is None:
        raise HTTPException(404, f"No session for simulator: {simulator_id}")
    return session.to_dict()


@router.post("/sessions/{simulator_id}/refresh")
async def refresh_session(simulator_id: str):
    session = get_session_manager().get(simulator_id)
    if session is None:
        raise HTTPException(404, f"No session for simulator: {simulator_id}")
    try:
        block = await session.reconciler.refresh()
    except FetchError as e:
        raise HTTPException(502, f"Block refresh failed: {e}")
    return {"block": block.to_dict() if block else None}


@router.get("/sessions/{simulator_id}/history")
async def block_history(simulator_id: str, limit: int = Query(default=10, ge=1, le=100)):
    manager = get_session_manager()
    try:
        blocks = await manager.fetch_block_history(simulator_id, limit)
    except FetchError as e:
        raise HTTPException(502, f"Block history unavailable: {e}")
    return {"count": len(blocks), "blocks": [b.model_dump(mode="json") for b in blocks]}


# =============================================================================
# Emitters
# =============================================================================

@router.post("/emitters/{simulator_id}/start")
async def start_emitter(simulator_id: str, request: StartEmitterRequest):
    options = request.model_dump(exclude={"simulator_name"})
    return await get_session_manager().start_emitter(simulator_id, request.simulator_name, **options)


@router.post("/emitters/{simulator_id}/stop")
async def stop_emitter(simulator_id: str):
    return await get_session_manager().stop_emitter(simulator_id)


@router.post("/emitters/{simulator_id}/power")
async def set_power(simulator_id: str, request: PowerRequest):
    emitter = get_session_manager().get_emitter(simulator_id)
    if emitter is None:
        raise HTTPException(404, f"No emitter for simulator: {simulator_id}")
    emitter.set_power(request.power_kw)
    return {"simulator_id": simulator_id, "power_kw": emitter.power_kw}


@router.get("/emitters/{simulator_id}")
async def emitter_stats(simulator_id: str):
    emitter = get_session_manager().get_emitter(simulator_id)
    if emitter is None:
        raise HTTPException(404, f"No emitter for simulator: {simulator_id}")
    return emitter.stats.to_dict()


# =============================================================================
# Windows
# =============================================================================

@router.get("/blocks/window")
async def block_window(ts: str, tz: Optional[str] = None):
    """
    30-minute window containing ts.

    Example: /api/blocks/window?ts=2024-01-01T06:30:00Z&tz=Asia/Kuala_Lumpur
    """
    zone = tz or get_settings().timezone
    try:
        start, end = window_for(ts, zone)
    except (ValueError, TypeError, LookupError) as e:
        raise HTTPException(400, f"Invalid timestamp or timezone: {e}")

    return {
        "window_start": start.isoformat(),
        "window_end": end.isoformat(),
        "label": format_window(start, end, zone),
        "timezone": zone,
    }
