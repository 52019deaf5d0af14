from contextlib import asynccontextmanager
import logging
import time
import uuid

from fastapi import FastAPI
from starlette.requests import Request

from gateway.api.router import api_router
from gateway.core.config import get_settings
from gateway.core.errors import GatewayError
from gateway.core.telemetry import (
    TelemetryRuntime,
    configure_api_logging,
    setup_api_telemetry,
    shutdown_api_telemetry,
)
from gateway.services.awx import get_awx_client
from gateway.services.kubernetes import get_cluster_client
from gateway.services.monitor import get_supervisor
from gateway.services.namespaces import get_namespace_service
from gateway.services.provisioning import get_provisioning_service
from gateway.services.repository import get_repository

settings = get_settings()
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_api_logging()
    # Misconfigured platform auth must stop the process before it serves traffic.
    get_awx_client()

    if get_settings().resume_monitors_on_startup:
        try:
            resumed = await get_provisioning_service().resume_monitors()
            logger.info("job monitors resumed count=%s", resumed)
        except GatewayError as exc:
            logger.warning("could not resume job monitors: %s", exc)

    try:
        yield
    finally:
        await get_supervisor().shutdown()
        if _telemetry_runtime is not None:
            shutdown_api_telemetry(app, _telemetry_runtime)
        await get_repository().close()
        for factory in (
            get_provisioning_service,
            get_namespace_service,
            get_supervisor,
            get_awx_client,
            get_cluster_client,
            get_repository,
        ):
            factory.cache_clear()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
_telemetry_runtime = setup_api_telemetry(app, settings)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    response.headers[REQUEST_ID_HEADER] = request_id
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f request_id=%s",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        request_id,
    )
    return response


app.include_router(api_router)
