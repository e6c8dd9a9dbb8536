"""
Chamber control API routes: toggles, pressure and session commands
"""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import Any, Dict, Optional
import logging

from backend_double import SyntheticBackend

logger = logging.getLogger(__name__)


# Request / response models
class SetpointRequest(BaseModel):
    setpoint: float


class CommandEnvelope(BaseModel):
    success: bool
    data: Optional[Dict[str, Any]] = None
    message: str = ""
    timestamp: Optional[str] = None


async def _execute(backend: SyntheticBackend, path: str, body: Optional[dict] = None) -> Dict:
    """Run a command on the backend double and map failures onto HTTP errors"""
    status, payload = await backend.handle_post(path, body)
    if status >= 400:
        detail = payload.get('message') or payload.get('detail') or "Command failed"
        logger.warning(f"Command {path} failed with HTTP {status}: {detail}")
        raise HTTPException(status_code=status, detail=detail)
    return payload


def create_control_routes(backend: SyntheticBackend):
    """Create chamber command routes"""
    router = APIRouter(prefix="/api", tags=["control"])

    # === LIGHTS / AC / INTERCOM ===

    @router.post("/control/lights/ceiling/toggle", response_model=CommandEnvelope)
    async def toggle_ceiling_lights():
        return await _execute(backend, "/api/control/lights/ceiling/toggle")

    @router.post("/control/lights/reading/toggle", response_model=CommandEnvelope)
    async def toggle_reading_lights():
        return await _execute(backend, "/api/control/lights/reading/toggle")

    @router.post("/control/lights/door/toggle", response_model=CommandEnvelope)
    async def toggle_door_lights():
        return await _execute(backend, "/api/control/lights/door/toggle")

    @router.post("/control/ac/toggle", response_model=CommandEnvelope)
    async def toggle_ac():
        return await _execute(backend, "/api/control/ac/toggle")

    @router.post("/control/intercom/toggle", response_model=CommandEnvelope)
    async def toggle_intercom():
        return await _execute(backend, "/api/control/intercom/toggle")

    # === PRESSURE ===

    @router.post("/pressure/add", response_model=CommandEnvelope)
    async def pressure_add():
        """Simulate the + button on the pressure panel"""
        return await _execute(backend, "/api/pressure/add")

    @router.post("/pressure/subtract", response_model=CommandEnvelope)
    async def pressure_subtract():
        """Simulate the - button on the pressure panel"""
        return await _execute(backend, "/api/pressure/subtract")

    @router.post("/pressure/setpoint", response_model=CommandEnvelope)
    async def set_pressure_setpoint(request: SetpointRequest):
        return await _execute(backend, "/api/pressure/setpoint", request.model_dump())

    # === SESSION ===

    @router.post("/session/start", response_model=CommandEnvelope)
    async def start_session():
        return await _execute(backend, "/api/session/start")

    @router.post("/session/end", response_model=CommandEnvelope)
    async def end_session():
        return await _execute(backend, "/api/session/end")

    return router
