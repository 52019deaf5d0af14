from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

import httpx

from gateway.core.config import get_settings
from gateway.core.errors import ConflictError, ConflictReason, ExternalSystemError

logger = logging.getLogger(__name__)

CUSTOMER_ID_ANNOTATION = "customer-id"
CREATED_BY_ANNOTATION = "created-by"
NODE_SELECTOR_ANNOTATION = "openshift.io/node-selector"


class ClusterConfigurationError(ValueError):
    """Raised at construction when the cluster URL is missing."""


class ClusterClient:
    """Namespace operations against the cluster REST API."""

    def __init__(
        self,
        base_url: str | None,
        *,
        token: str | None = None,
        insecure: bool = False,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url:
            raise ClusterConfigurationError("kubernetes url is required in config")
        if not token:
            logger.warning("no kubernetes token configured; cluster access may fail or be limited")
        if insecure:
            logger.warning("insecure mode enabled for kubernetes client; TLS verification is disabled")

        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.verify = not insecure
        self._transport = transport
        self.headers = {"Accept": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    async def get_namespace(self, name: str) -> dict[str, Any] | None:
        response = await self._request("GET", f"/api/v1/namespaces/{name}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response, f"get namespace {name}")
        return response.json()

    async def create_namespace(self, name: str, annotations: dict[str, str]) -> dict[str, Any]:
        body = {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {"name": name, "annotations": annotations},
        }
        response = await self._request("POST", "/api/v1/namespaces", json=body)
        if response.status_code == 409:
            raise ConflictError(
                "The namespace name is not available. Please choose another one.",
                reason=ConflictReason.EXISTS_IN_CLUSTER,
            )
        self._raise_for_status(response, f"create namespace {name}")
        logger.info("kubernetes namespace created name=%s", name)
        return response.json()

    async def delete_namespace(self, name: str) -> bool:
        """Delete ``name``; returns False when the namespace was already absent."""
        response = await self._request("DELETE", f"/api/v1/namespaces/{name}")
        if response.status_code == 404:
            logger.info("kubernetes namespace already absent name=%s", name)
            return False
        self._raise_for_status(response, f"delete namespace {name}")
        logger.info("kubernetes namespace deletion requested name=%s", name)
        return True

    async def ping(self) -> None:
        response = await self._request("GET", "/api/v1/namespaces", params={"limit": 1})
        self._raise_for_status(response, "list namespaces")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                verify=self.verify,
                transport=self._transport,
            ) as client:
                return await client.request(
                    method,
                    f"{self.base_url}{path}",
                    params=params,
                    json=json,
                    headers=self.headers,
                )
        except httpx.HTTPError as exc:
            raise ExternalSystemError(
                f"kubernetes request failed: {method} {path}: {exc}",
                system="kubernetes",
            ) from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.status_code < 400:
            return
        raise ExternalSystemError(
            f"kubernetes API error during {action} (status {response.status_code}): {response.text[:500]}",
            system="kubernetes",
            status_code=response.status_code,
        )


def namespace_annotations(*, customer_id: str, created_by: str, node_selector: str | None) -> dict[str, str]:
    annotations = {
        CUSTOMER_ID_ANNOTATION: customer_id,
        CREATED_BY_ANNOTATION: created_by,
    }
    if node_selector:
        annotations[NODE_SELECTOR_ANNOTATION] = node_selector
    return annotations


@lru_cache
def get_cluster_client() -> ClusterClient:
    settings = get_settings()
    return ClusterClient(
        settings.kube_url,
        token=settings.kube_token,
        insecure=settings.kube_insecure,
        timeout_seconds=settings.kube_timeout_seconds,
    )
