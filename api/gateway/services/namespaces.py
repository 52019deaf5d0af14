from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

from opentelemetry import trace

from gateway.core.config import get_settings
from gateway.core.errors import (
    ConflictError,
    ConflictReason,
    Divergence,
    GatewayError,
    NamespaceNotFoundError,
    PersistenceError,
)
from gateway.core.names import validate_namespace_name
from gateway.services.audit import RESOURCE_NAMESPACE, AuditLog
from gateway.services.kubernetes import get_cluster_client, namespace_annotations
from gateway.services.locks import KeyedLocks
from gateway.services.repository import RepositoryError, get_repository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class NamespaceLifecycleService:
    """Owns namespaces on the cluster together with their ledger records.

    A non-owner never learns that a namespace exists: reads and deletes of a
    namespace held by another customer fail exactly like a missing one.
    """

    def __init__(
        self,
        *,
        cluster: Any,
        repository: Any,
        audit: AuditLog | None = None,
        node_selector: str | None = None,
        locks: KeyedLocks | None = None,
    ) -> None:
        self.cluster = cluster
        self.repository = repository
        self.audit = audit or AuditLog(repository)
        self.node_selector = node_selector
        self.locks = locks or KeyedLocks()

    async def create(self, name: str, customer_id: str, creator: str) -> dict[str, Any]:
        audit_fields = self._audit_fields("create", name, customer_id, creator)
        with tracer.start_as_current_span("namespaces.create") as span:
            span.set_attribute("namespace.name", str(name))
            span.set_attribute("customer.id", customer_id)
            try:
                name = validate_namespace_name(name)
                audit_fields["target"] = name
                async with self.locks.hold(name):
                    record = await self._create_locked(name, customer_id, creator)
            except GatewayError as exc:
                await self.audit.failure(error=exc.message, **audit_fields)
                raise

        await self.audit.success(details="namespace created", **audit_fields)
        logger.info("namespace created name=%s customer_id=%s by=%s", name, customer_id, creator)
        return record

    async def delete(self, name: str, customer_id: str, actor: str | None = None) -> None:
        audit_fields = self._audit_fields("delete", name, customer_id, actor)
        with tracer.start_as_current_span("namespaces.delete") as span:
            span.set_attribute("namespace.name", str(name))
            span.set_attribute("customer.id", customer_id)
            try:
                async with self.locks.hold(name):
                    await self._delete_locked(name, customer_id)
            except GatewayError as exc:
                await self.audit.failure(error=exc.message, **audit_fields)
                raise

        await self.audit.success(details="namespace deleted", **audit_fields)
        logger.info("namespace deleted name=%s customer_id=%s by=%s", name, customer_id, actor)

    async def get(self, name: str, customer_id: str, actor: str | None = None) -> dict[str, Any]:
        try:
            return await self._owned_record(name, customer_id)
        except GatewayError as exc:
            await self.audit.failure(error=exc.message, **self._audit_fields("get", name, customer_id, actor))
            raise

    async def list_by_customer(self, customer_id: str, actor: str | None = None) -> list[dict[str, Any]]:
        try:
            return await self.repository.list_namespaces_by_customer(customer_id)
        except RepositoryError as exc:
            message = f"failed to list namespaces: {exc}"
            await self.audit.failure(error=message, **self._audit_fields("list", "", customer_id, actor))
            raise PersistenceError(message) from exc

    async def list_history(self, customer_id: str, *, limit: int = 50, offset: int = 0) -> list[dict[str, Any]]:
        try:
            return await self.repository.list_history(customer_id=customer_id, limit=limit, offset=offset)
        except RepositoryError as exc:
            raise PersistenceError(f"failed to list history: {exc}") from exc

    async def _create_locked(self, name: str, customer_id: str, creator: str) -> dict[str, Any]:
        if await self.cluster.get_namespace(name) is not None:
            raise ConflictError(
                "The namespace name is not available. Please choose another one.",
                reason=ConflictReason.EXISTS_IN_CLUSTER,
            )

        try:
            existing = await self.repository.get_namespace(name=name, customer_id=customer_id)
        except RepositoryError as exc:
            raise PersistenceError(f"failed to check namespace record: {exc}") from exc
        if existing is not None:
            raise ConflictError(
                "namespace already exists in your tenant",
                reason=ConflictReason.EXISTS_IN_STORE,
            )

        annotations = namespace_annotations(
            customer_id=customer_id,
            created_by=creator,
            node_selector=self.node_selector,
        )
        await self.cluster.create_namespace(name, annotations)

        try:
            return await self.repository.insert_namespace(name=name, customer_id=customer_id, created_by=creator)
        except RepositoryError as exc:
            logger.error("namespace %s created in cluster but not recorded: %s", name, exc)
            raise PersistenceError(
                f"namespace {name} was created in the cluster but could not be recorded",
                divergence=Divergence.CLUSTER_ORPHAN,
            ) from exc

    async def _delete_locked(self, name: str, customer_id: str) -> None:
        await self._owned_record(name, customer_id)
        await self.cluster.delete_namespace(name)

        try:
            deleted = await self.repository.delete_namespace(name=name, customer_id=customer_id)
        except RepositoryError as exc:
            logger.error("namespace %s deleted from cluster but record remains: %s", name, exc)
            raise PersistenceError(
                f"namespace {name} was deleted from the cluster but its record could not be removed",
                divergence=Divergence.RECORD_ORPHAN,
            ) from exc
        if not deleted:
            logger.warning("namespace record already gone name=%s customer_id=%s", name, customer_id)

    async def _owned_record(self, name: str, customer_id: str) -> dict[str, Any]:
        try:
            record = await self.repository.get_namespace(name=name, customer_id=customer_id)
        except RepositoryError as exc:
            raise PersistenceError(f"failed to load namespace record: {exc}") from exc
        if record is None:
            raise NamespaceNotFoundError(name)
        return record

    @staticmethod
    def _audit_fields(action: str, name: str, customer_id: str, actor: str | None) -> dict[str, Any]:
        return {
            "customer_id": customer_id,
            "resource_type": RESOURCE_NAMESPACE,
            "action": action,
            "target": name,
            "actor": actor,
        }


@lru_cache
def get_namespace_service() -> NamespaceLifecycleService:
    repository = get_repository()
    return NamespaceLifecycleService(
        cluster=get_cluster_client(),
        repository=repository,
        audit=AuditLog(repository),
        node_selector=get_settings().kube_namespace_node_selector,
    )
