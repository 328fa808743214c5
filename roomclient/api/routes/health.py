"""Health check endpoints.

- /healthz: Liveness probe (is the process alive?)
- /readyz: Readiness probe (can the client accept intents?)
- /health: Combined view
"""

from typing import Any

from fastapi import APIRouter, Response, status

router = APIRouter(tags=["health"])


# Health status tracking
_ready: bool = False
_components: dict[str, bool] = {
    "media_engine": False,
    "room_client": False,
    "signaling": False,
}

# Signaling is only up while a room is joined
_critical_components = ["media_engine", "room_client"]


def set_ready(ready: bool) -> None:
    """Set overall readiness status."""
    global _ready
    _ready = ready


def set_component_health(component: str, healthy: bool) -> None:
    """Set health status for a specific component."""
    if component in _components:
        _components[component] = healthy


def get_component_health() -> dict[str, bool]:
    """Get health status of all components."""
    return _components.copy()


def _all_critical_ready() -> bool:
    return all(_components.get(c, False) for c in _critical_components)


@router.get("/healthz", response_model=dict[str, str])
async def healthz() -> dict[str, str]:
    """Liveness probe.

    Returns 200 if the process is alive.
    """
    return {"status": "alive"}


@router.get("/readyz")
async def readyz(response: Response) -> dict[str, Any]:
    """Readiness probe.

    Returns 503 if any critical component is unhealthy.
    """
    if _ready and _all_critical_ready():
        return {"status": "ready", "components": get_component_health()}

    response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {"status": "not_ready", "components": get_component_health()}


@router.get("/health")
async def health(response: Response) -> dict[str, Any]:
    """Combined liveness and readiness information."""
    healthy = _ready and _all_critical_ready()
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": "healthy" if healthy else "degraded",
        "ready": _ready,
        "components": get_component_health(),
    }
