"""Health check API routes.

Provides:
- GET /health: dependency health with circuit breaker states (public)
- GET /health/ping: lightweight 200 for external uptime monitors
"""

import logging
import time
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Response, status

from samplesync.core.resilience import CircuitState, get_all_circuit_breakers
from samplesync.integrations.lims_client import get_lims_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()
_VERSION = "1.0.0"


@router.get("", status_code=status.HTTP_200_OK)
async def health_check(response: Response) -> dict[str, Any]:
    """Overall health with a LIMS probe and circuit breaker states.

    Returns 503 when the Supabase circuit is open, since nothing can be
    synced without the local store. An unreachable LIMS only degrades.
    """
    breakers = get_all_circuit_breakers()
    circuit_states = {name: cb.state.value for name, cb in breakers.items()}

    lims_ok = await get_lims_client().health_check()

    supabase_breaker = breakers.get("supabase")
    if supabase_breaker is not None and supabase_breaker.state == CircuitState.OPEN:
        overall = "unhealthy"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif not lims_ok:
        overall = "degraded"
    else:
        overall = "healthy"

    return {
        "status": overall,
        "services": {"lims": "healthy" if lims_ok else "unhealthy"},
        "circuit_breakers": circuit_states,
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "version": _VERSION,
    }


@router.get("/ping", status_code=status.HTTP_200_OK)
async def ping() -> dict[str, str]:
    """Lightweight ping for uptime monitors. No dependency checks, no auth."""
    return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}
