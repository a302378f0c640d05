"""
Health check endpoint.
"""
import time
from datetime import datetime, timezone

from starlette.requests import Request
from starlette.responses import JSONResponse

start_time = time.time()


async def health_check(request: Request) -> JSONResponse:
    """
    Basic health check endpoint.

    Returns 200 if the service is running, with the number of live sessions.
    """
    registry = getattr(request.app.state, "registry", None)
    return JSONResponse({
        "ok": True,
        "time": datetime.now(timezone.utc).isoformat(),
        "uptime_seconds": int(time.time() - start_time),
        "sessions": len(registry) if registry is not None else 0,
    })
