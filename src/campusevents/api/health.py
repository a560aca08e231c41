"""Health check endpoint.

Learn: Reports server status plus the realtime stack: whether the durable
channel is connected, how many live sessions/users are registered, and
the relay's counters. The database is checked through the read model's
engine. A disabled channel marks the service "degraded", not down.
"""

from fastapi import APIRouter, Request
from sqlalchemy import text

from campusevents import __version__

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    realtime = getattr(request.app.state, "realtime", None)
    if realtime is None:
        checks["realtime"] = "not started"
        return {"status": "degraded", **checks}

    if realtime.engine is not None:
        try:
            async with realtime.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["postgres"] = "ok"
        except Exception as e:
            checks["postgres"] = f"error: {e}"

    realtime_status = realtime.status()
    checks["redis"] = realtime_status["channel"]

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    return {"status": status, **checks, "realtime": realtime_status}
