"""
Notifications API
Endpoints for WhatsApp threshold triggers, settings and history.

Endpoints:
    POST   /api/notifications/triggers                 → Create trigger
    GET    /api/notifications/triggers                 → List triggers (?simulator_id=)
    GET    /api/notifications/triggers/{id}            → Get trigger with evaluation state
    PATCH  /api/notifications/triggers/{id}            → Update trigger
    DELETE /api/notifications/triggers/{id}            → Delete trigger (purges state)
    POST   /api/notifications/triggers/{id}/toggle     → Activate / deactivate
    POST   /api/notifications/triggers/bulk-toggle     → Toggle all triggers of a simulator
    GET    /api/notifications/settings                 → Get settings
    PUT    /api/notifications/settings                 → Update settings
    GET    /api/notifications/history                  → Dispatch history (?simulator_id=&limit=)
    DELETE /api/notifications/history                  → Clear history (?simulator_id=)
    GET    /api/notifications/status                   → System status
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, ConfigDict

from alerts import get_trigger_manager
from core.errors import TriggerNotFound, ValidationError

router = APIRouter(prefix="/notifications", tags=["Notifications"])


# =============================================================================
# Request Models
# =============================================================================

class CreateTriggerRequest(BaseModel):
    """Request body for creating a trigger"""
    simulator_id: str
    phone_number: str
    threshold_percent: float
    is_active: bool = True

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "simulator_id": "sim-1",
            "phone_number": "+60 12-345 6789",
            "threshold_percent": 80,
            "is_active": True,
        }
    })


class UpdateTriggerRequest(BaseModel):
    simulator_id: Optional[str] = None
    phone_number: Optional[str] = None
    threshold_percent: Optional[float] = None
    is_active: Optional[bool] = None


class ToggleRequest(BaseModel):
    is_active: bool


class BulkToggleRequest(BaseModel):
    simulator_id: str
    is_active: bool


class SettingsRequest(BaseModel):
    cooldown_minutes: Optional[float] = None
    max_daily_notifications_per_trigger: Optional[int] = None
    enabled_globally: Optional[bool] = None


def _bad_request(e: ValidationError) -> HTTPException:
    return HTTPException(400, e.to_dict())


# =============================================================================
# Triggers
# =============================================================================

@router.post("/triggers")
async def create_trigger(request: CreateTriggerRequest):
    manager = get_trigger_manager()
    try:
        trigger = manager.create_trigger(
            request.simulator_id, request.phone_number, request.threshold_percent, request.is_active,
        )
    except ValidationError as e:
        raise _bad_request(e)

    return {"message": "Trigger created", "trigger": trigger.to_dict()}


@router.get("/triggers")
async def list_triggers(simulator_id: Optional[str] = None, active_only: bool = False):
    manager = get_trigger_manager()
    triggers = manager.list_triggers(simulator_id, active_only)
    return {"count": len(triggers), "triggers": [t.to_dict() for t in triggers]}


@router.post("/triggers/bulk-toggle")
async def bulk_toggle(request: BulkToggleRequest):
    manager = get_trigger_manager()
    toggled = manager.bulk_toggle(request.simulator_id, request.is_active)
    return {"count": len(toggled), "triggers": [t.to_dict() for t in toggled]}


@router.get("/triggers/{trigger_id}")
async def get_trigger(trigger_id: str):
    """Trigger plus its hysteresis / cooldown state"""
    manager = get_trigger_manager()
    try:
        trigger = manager.get_trigger(trigger_id)
    except TriggerNotFound:
        raise HTTPException(404, f"Trigger not found: {trigger_id}")

    state = manager.evaluation_state(trigger_id)
    return {"trigger": trigger.to_dict(), "state": state.to_dict()}


@router.patch("/triggers/{trigger_id}")
async def update_trigger(trigger_id: str, request: UpdateTriggerRequest):
    manager = get_trigger_manager()
    try:
        trigger = manager.update_trigger(trigger_id, **request.model_dump(exclude_none=True))
    except TriggerNotFound:
        raise HTTPException(404, f"Trigger not found: {trigger_id}")
    except ValidationError as e:
        raise _bad_request(e)

    return {"message": "Trigger updated", "trigger": trigger.to_dict()}


@router.post("/triggers/{trigger_id}/toggle")
async def toggle_trigger(trigger_id: str, request: ToggleRequest):
    manager = get_trigger_manager()
    try:
        trigger = manager.toggle_trigger(trigger_id, request.is_active)
    except TriggerNotFound:
        raise HTTPException(404, f"Trigger not found: {trigger_id}")
    except ValidationError as e:
        raise _bad_request(e)

    return {"trigger": trigger.to_dict()}


@router.delete("/triggers/{trigger_id}")
async def delete_trigger(trigger_id: str):
    manager = get_trigger_manager()
    try:
        manager.delete_trigger(trigger_id)
    except TriggerNotFound:
        raise HTTPException(404, f"Trigger not found: {trigger_id}")

    return {"message": f"Trigger {trigger_id} deleted"}


# =============================================================================
# Settings
# =============================================================================

@router.get("/settings")
async def get_settings():
    return get_trigger_manager().get_settings().to_dict()


@router.put("/settings")
async def update_settings(request: SettingsRequest):
    manager = get_trigger_manager()
    try:
        settings = manager.update_settings(**request.model_dump(exclude_none=True))
    except ValidationError as e:
        raise _bad_request(e)
    return settings.to_dict()


# =============================================================================
# History & Status
# =============================================================================

@router.get("/history")
async def get_history(simulator_id: Optional[str] = None, limit: int = Query(default=50, ge=1, le=500)):
    history = get_trigger_manager().get_history(simulator_id, limit)
    return {"count": len(history), "history": [h.to_dict() for h in history]}


@router.delete("/history")
async def clear_history(simulator_id: Optional[str] = None):
    removed = get_trigger_manager().clear_history(simulator_id)
    return {"message": "History cleared", "removed": removed}


@router.get("/status")
async def system_status():
    return await get_trigger_manager().system_status()
