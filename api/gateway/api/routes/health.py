import logging
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from gateway.services.awx import get_awx_client
from gateway.services.kubernetes import get_cluster_client
from gateway.services.repository import get_repository

router = APIRouter()
logger = logging.getLogger(__name__)


def get_readiness_probes() -> dict[str, Callable[[], Any]]:
    return {
        "database": get_repository,
        "awx": get_awx_client,
        "kubernetes": get_cluster_client,
    }


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(probes: dict[str, Callable[[], Any]] = Depends(get_readiness_probes)) -> JSONResponse:
    checks: dict[str, str] = {}
    for name, factory in probes.items():
        try:
            await factory().ping()
        except Exception as exc:
            logger.warning("readiness check failed component=%s: %s", name, exc)
            checks[name] = f"error: {exc}"
        else:
            checks[name] = "ok"

    ready = all(value == "ok" for value in checks.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if ready else "not_ready", "checks": checks},
    )
