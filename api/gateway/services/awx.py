"""Async client for the AWX automation platform API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import httpx

from gateway.core.config import get_settings
from gateway.core.errors import ExternalSystemError, NotFoundError

logger = logging.getLogger(__name__)

API_ROOT = "/api/v2"
ACTIVE_JOB_STATUSES = ("pending", "waiting", "running")
MAX_TEMPLATE_PAGES = 20


class AwxConfigurationError(ValueError):
    """Raised at construction when the client configuration is unusable."""


@dataclass(slots=True)
class AwxJob:
    id: int
    status: str
    name: str = ""


def normalize_api_root(base_url: str) -> str:
    """Return ``base_url`` pointing at the versioned API root, without a trailing slash."""
    stripped = base_url.strip().rstrip("/")
    if stripped.endswith(API_ROOT):
        return stripped
    return f"{stripped}{API_ROOT}"


class AwxClient:
    def __init__(
        self,
        base_url: str | None,
        *,
        username: str | None = None,
        password: str | None = None,
        token: str | None = None,
        bearer: str | None = None,
        insecure: bool = False,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url:
            raise AwxConfigurationError("awx config missing required URL")

        provided: list[str] = []
        if username or password:
            if not (username and password):
                raise AwxConfigurationError("basic authentication requires both username and password")
            provided.append("basic")
        if token:
            provided.append("token")
        if bearer:
            provided.append("bearer")

        if not provided:
            raise AwxConfigurationError(
                "exactly one authentication method is required: username/password, token, or bearer",
            )
        if len(provided) > 1:
            raise AwxConfigurationError(
                f"exactly one authentication method is required, but {len(provided)} were provided: {provided}",
            )

        self.api_root = normalize_api_root(base_url)
        self.auth_method = provided[0]
        self.timeout_seconds = timeout_seconds
        self.verify = not insecure
        self._transport = transport
        self._auth: httpx.BasicAuth | None = None
        self.headers = {"Accept": "application/json"}
        if self.auth_method == "basic":
            self._auth = httpx.BasicAuth(username or "", password or "")
        elif self.auth_method == "token":
            self.headers["Authorization"] = f"Token {token}"
        else:
            self.headers["Authorization"] = f"Bearer {bearer}"

        logger.info("initialized awx client api_root=%s auth=%s", self.api_root, self.auth_method)

    async def resolve_template_id(self, name: str) -> int:
        path: str | None = "/job_templates/"
        params: dict[str, Any] | None = {"name": name}
        for _ in range(MAX_TEMPLATE_PAGES):
            if path is None:
                break
            payload = await self._get_json(path, params=params)
            for template in _results(payload):
                if template.get("name") == name and template.get("id") is not None:
                    return int(template["id"])
            path = _next_page_path(payload.get("next"))
            params = None

        logger.warning("awx template not found name=%s", name)
        raise NotFoundError(f"job template not found: {name}")

    async def launch_job(self, template_id: int, extra_vars: dict[str, Any]) -> int:
        response = await self._request(
            "POST",
            f"/job_templates/{template_id}/launch/",
            json={"extra_vars": extra_vars},
        )
        payload = _decode(response)
        job_id = payload.get("job", payload.get("id"))
        if job_id is None:
            raise ExternalSystemError("awx launch response did not include a job id", system="awx")
        logger.info("awx job launched template_id=%s job_id=%s", template_id, job_id)
        return int(job_id)

    async def get_job(self, job_id: int) -> AwxJob:
        response = await self._request("GET", f"/jobs/{job_id}/", allow_not_found=True)
        if response is None:
            raise NotFoundError(f"awx job not found: {job_id}")
        return _job_from_payload(_decode(response))

    async def list_running_jobs(self, template_id: int) -> list[AwxJob]:
        payload = await self._get_json(
            "/jobs/",
            params={
                "job_template": template_id,
                "status__in": ",".join(ACTIVE_JOB_STATUSES),
                "order_by": "created",
            },
        )
        jobs = [_job_from_payload(item) for item in _results(payload)]
        return [job for job in jobs if job.status in ACTIVE_JOB_STATUSES]

    async def ping(self) -> None:
        await self._request("GET", "/ping/")

    async def _get_json(self, path: str, *, params: dict[str, Any] | None = None) -> dict[str, Any]:
        response = await self._request("GET", path, params=params)
        return _decode(response)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> httpx.Response | None:
        url = f"{self.api_root}{path}"
        logger.debug("awx request method=%s url=%s", method, url)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                verify=self.verify,
                auth=self._auth,
                transport=self._transport,
            ) as client:
                response = await client.request(method, url, params=params, json=json, headers=self.headers)
        except httpx.HTTPError as exc:
            raise ExternalSystemError(f"awx request failed: {method} {path}: {exc}", system="awx") from exc

        if response.status_code == 404 and allow_not_found:
            return None
        if response.status_code >= 400:
            raise ExternalSystemError(
                f"awx API error (status {response.status_code}): {response.text[:500]}",
                system="awx",
                status_code=response.status_code,
            )
        return response


def _decode(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise ExternalSystemError("awx returned a non-JSON response", system="awx") from exc
    if not isinstance(payload, dict):
        raise ExternalSystemError("awx returned an unexpected payload", system="awx")
    return payload


def _results(payload: dict[str, Any]) -> list[dict[str, Any]]:
    results = payload.get("results")
    if not isinstance(results, list):
        return []
    return [item for item in results if isinstance(item, dict)]


def _next_page_path(next_url: Any) -> str | None:
    # AWX returns "next" as a path relative to the host, e.g. /api/v2/job_templates/?page=2
    if not isinstance(next_url, str) or not next_url:
        return None
    _, marker, remainder = next_url.partition(API_ROOT)
    if not marker:
        return None
    return remainder


def _job_from_payload(payload: dict[str, Any]) -> AwxJob:
    if payload.get("id") is None:
        raise ExternalSystemError("awx job payload did not include an id", system="awx")
    return AwxJob(
        id=int(payload["id"]),
        status=str(payload.get("status") or ""),
        name=str(payload.get("name") or ""),
    )


@lru_cache
def get_awx_client() -> AwxClient:
    settings = get_settings()
    return AwxClient(
        settings.awx_url,
        username=settings.awx_username,
        password=settings.awx_password,
        token=settings.awx_token,
        bearer=settings.awx_bearer,
        insecure=settings.awx_insecure,
        timeout_seconds=settings.awx_timeout_seconds,
    )
