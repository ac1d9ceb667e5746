"""Health check endpoints."""

from fastapi import APIRouter, Request, Response, status

from threadcast.config import get_settings


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness probe - checks if the application is running."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request, response: Response) -> dict[str, str | bool]:
    """Readiness probe - comment storage and realtime fan-out are wired."""
    settings = get_settings()
    state = request.app.state
    storage = getattr(state, "comment_service", None) is not None
    realtime = getattr(state, "broadcaster", None) is not None
    if not storage:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "ready" if storage else "degraded",
        "environment": settings.environment,
        "storage": storage,
        "realtime": realtime,
    }


@router.get("")
async def health() -> dict[str, str]:
    """General health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }
