"""FastAPI router — health and cache management for a ResilientCaller.

ARCHITECTURE
────────────
::

    create_health_router(caller) → APIRouter
      GET  /health                   ─ overall report + component snapshots
      GET  /health/{operation_key}   ─ one operation (404 if never called)
      POST /cache/invalidate         ─ {"pattern": "news:*"} → removed count
      GET  /alerts/recent            ─ most recent alerts, newest last

    Depends on:
      ResilientCaller ─ every endpoint delegates here
"""

from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from callguard.execution.orchestrator import ResilientCaller


class InvalidateRequest(BaseModel):
    """Request body for cache invalidation."""

    pattern: str = Field(min_length=1, description="Glob matched against entry tags")


class InvalidateResponse(BaseModel):
    pattern: str
    removed: int


def create_health_router(
    caller: ResilientCaller,
    prefix: str = "",
    tags: list[str] | None = None,
) -> APIRouter:
    """Create the health/cache router for ``caller``.

    Example:
        >>> from fastapi import FastAPI
        >>> app = FastAPI()
        >>> app.include_router(create_health_router(caller), prefix="/callguard")
    """
    router = APIRouter(prefix=prefix, tags=tags or ["callguard"])

    @router.get("/health")
    async def get_health() -> dict[str, Any]:
        """Overall health with per-operation statistics."""
        return caller.get_health().to_dict()

    @router.get("/health/{operation_key}")
    async def get_operation_health(operation_key: str) -> dict[str, Any]:
        """Health of a single operation key."""
        report = caller.get_health(operation_key)
        if operation_key not in report.operations:
            raise HTTPException(404, f"No calls recorded for '{operation_key}'")
        return report.to_dict()

    @router.post("/cache/invalidate", response_model=InvalidateResponse)
    async def invalidate_cache(request: InvalidateRequest) -> InvalidateResponse:
        """Drop cached results whose tags match the pattern."""
        removed = caller.invalidate_cache(request.pattern)
        return InvalidateResponse(pattern=request.pattern, removed=removed)

    @router.get("/alerts/recent")
    async def recent_alerts(limit: int = Query(20, ge=1, le=200)) -> list[dict[str, Any]]:
        """Alerts raised most recently."""
        return [alert.to_dict() for alert in caller.alerts.recent(limit)]

    return router


__all__ = ["InvalidateRequest", "InvalidateResponse", "create_health_router"]
