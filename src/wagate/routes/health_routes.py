"""
Liveness endpoint with a per-state session breakdown.
"""
import time
from datetime import datetime, timezone

from starlette.requests import Request
from starlette.responses import JSONResponse

STARTED_AT = time.monotonic()


async def health_check(request: Request) -> JSONResponse:
    """GET /health - always 200 while the process is serving."""
    controller = getattr(request.app.state, "controller", None)
    by_state = controller.registry.count_by_state() if controller else {}

    return JSONResponse(
        {
            "success": True,
            "status": "ok" if controller else "starting",
            "time": datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(time.monotonic() - STARTED_AT, 1),
            "sessions": by_state,
            "active_sessions": sum(by_state.values()),
        }
    )
