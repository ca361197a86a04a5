"""
Health endpoints.

Lightweight liveness and readiness checks that expose no secrets.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from synth.core.database import check_connection

logger = logging.getLogger("synth")

root_router = APIRouter(tags=["health"])


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: database reachable."""
    if check_connection():
        return {"status": "ok", "db": "ok"}
    logger.warning("readyz.db_unavailable")
    return JSONResponse(status_code=503, content={"status": "degraded", "db": "unavailable"})
