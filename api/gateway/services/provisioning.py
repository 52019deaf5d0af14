from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from opentelemetry import trace

from gateway.core.config import get_settings
from gateway.core.errors import (
    ConflictError,
    ConflictReason,
    Divergence,
    ExternalSystemError,
    JobNotFoundError,
    LaunchFailedError,
    NotFoundError,
    PersistenceError,
    TemplateNotFoundError,
)
from gateway.services.audit import RESOURCE_DATABASE_INSTANCE, AuditLog
from gateway.services.awx import ACTIVE_JOB_STATUSES, get_awx_client
from gateway.services.locks import KeyedLocks
from gateway.services.monitor import STATUS_RUNNING, JobMonitor, MonitorHandle, get_supervisor, map_external_status
from gateway.services.repository import RepositoryError, get_repository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SECRET_PARAMETER_KEYS = {"password", "secret", "token"}
REDACTED = "********"


@dataclass(slots=True)
class ProvisioningResult:
    job_id: int
    status: str
    instance_name: str | None = None
    customer_id: str | None = None
    record_id: int | None = None


def redact_parameters(parameters: dict[str, Any]) -> dict[str, Any]:
    return {key: (REDACTED if key.lower() in SECRET_PARAMETER_KEYS else value) for key, value in parameters.items()}


class ProvisioningService:
    def __init__(
        self,
        *,
        awx: Any,
        repository: Any,
        supervisor: Any,
        audit: AuditLog | None = None,
        poll_interval_seconds: float = 5.0,
        max_consecutive_poll_failures: int = 5,
        dedupe_enabled: bool = True,
        locks: KeyedLocks | None = None,
    ) -> None:
        self.awx = awx
        self.repository = repository
        self.supervisor = supervisor
        self.audit = audit or AuditLog(repository)
        self.poll_interval_seconds = poll_interval_seconds
        self.max_consecutive_poll_failures = max_consecutive_poll_failures
        self.dedupe_enabled = dedupe_enabled
        self.locks = locks or KeyedLocks()

    async def provision(
        self,
        *,
        template_name: str,
        instance_name: str,
        customer_id: str,
        created_by: str,
        username: str | None = None,
        password: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> ProvisioningResult:
        audit_fields = {
            "customer_id": customer_id,
            "resource_type": RESOURCE_DATABASE_INSTANCE,
            "action": "create",
            "target": instance_name,
            "actor": created_by,
        }
        with tracer.start_as_current_span("provisioning.provision") as span:
            span.set_attribute("template.name", template_name)
            span.set_attribute("customer.id", customer_id)
            try:
                if self.dedupe_enabled:
                    async with self.locks.hold((customer_id, template_name)):
                        await self._ensure_no_running_job(customer_id=customer_id, template_name=template_name)
                        result = await self._launch_and_record(
                            template_name=template_name,
                            instance_name=instance_name,
                            customer_id=customer_id,
                            created_by=created_by,
                            username=username,
                            password=password,
                            parameters=parameters,
                        )
                else:
                    result = await self._launch_and_record(
                        template_name=template_name,
                        instance_name=instance_name,
                        customer_id=customer_id,
                        created_by=created_by,
                        username=username,
                        password=password,
                        parameters=parameters,
                    )
            except (ConflictError, NotFoundError, ExternalSystemError, PersistenceError) as exc:
                await self.audit.failure(error=exc.message, details=type(exc).__name__, **audit_fields)
                raise

            span.set_attribute("job.id", result.job_id)

        await self.audit.success(details=f"job {result.job_id} launched from {template_name}", **audit_fields)
        self._start_monitor_quietly(external_job_id=result.job_id, record_id=result.record_id)
        logger.info(
            "provisioning started instance=%s customer_id=%s job_id=%s",
            instance_name,
            customer_id,
            result.job_id,
        )
        return result

    async def check_active_job(self, *, customer_id: str, template_name: str) -> ProvisioningResult | None:
        try:
            template_id = await self.awx.resolve_template_id(template_name)
        except NotFoundError as exc:
            raise TemplateNotFoundError(template_name) from exc

        jobs = await self.awx.list_running_jobs(template_id)
        logger.info("found %s running job(s) for template %s", len(jobs), template_name)
        for job in jobs:
            if job.status in ACTIVE_JOB_STATUSES:
                return ProvisioningResult(job_id=job.id, status=STATUS_RUNNING, customer_id=customer_id)
        return None

    async def get_job_status(self, job_id: int) -> ProvisioningResult:
        try:
            job = await self.awx.get_job(job_id)
        except NotFoundError as exc:
            raise JobNotFoundError(job_id) from exc
        return ProvisioningResult(job_id=job.id, status=map_external_status(job.status))

    def start_monitor(self, *, external_job_id: int, record_id: int) -> MonitorHandle:
        def factory(stop_event: asyncio.Event):
            monitor = JobMonitor(
                client=self.awx,
                repository=self.repository,
                external_job_id=external_job_id,
                record_id=record_id,
                poll_interval_seconds=self.poll_interval_seconds,
                max_consecutive_failures=self.max_consecutive_poll_failures,
                stop_event=stop_event,
            )
            return monitor.run()

        return self.supervisor.spawn(f"job-monitor-{external_job_id}", factory)

    async def resume_monitors(self) -> int:
        """Re-attach monitors to ledger records left running by a previous process."""
        try:
            rows = await self.repository.list_running_provisioning_jobs()
        except RepositoryError as exc:
            raise PersistenceError(f"failed to list running jobs: {exc}") from exc
        for row in rows:
            self.start_monitor(external_job_id=row["external_job_id"], record_id=row["id"])
        if rows:
            logger.info("resumed monitoring for %s running job(s)", len(rows))
        return len(rows)

    async def _ensure_no_running_job(self, *, customer_id: str, template_name: str) -> None:
        try:
            existing = await self.repository.find_running_provisioning_job(
                customer_id=customer_id,
                template_name=template_name,
            )
        except RepositoryError as exc:
            raise PersistenceError(f"failed to check running jobs: {exc}") from exc
        if existing is not None:
            raise ConflictError(
                f"a provisioning job for template {template_name} is already running",
                reason=ConflictReason.ACTIVE_JOB,
                job_id=existing["external_job_id"],
            )

    async def _launch_and_record(
        self,
        *,
        template_name: str,
        instance_name: str,
        customer_id: str,
        created_by: str,
        username: str | None,
        password: str | None,
        parameters: dict[str, Any] | None,
    ) -> ProvisioningResult:
        try:
            template_id = await self.awx.resolve_template_id(template_name)
        except NotFoundError as exc:
            raise TemplateNotFoundError(template_name) from exc

        extra_vars: dict[str, Any] = dict(parameters or {})
        extra_vars.update(
            {
                "instance_name": instance_name,
                "username": username,
                "password": password,
                "customer_id": customer_id,
            }
        )
        logger.info("launching template %s (id=%s) for customer_id=%s", template_name, template_id, customer_id)
        try:
            job_id = await self.awx.launch_job(template_id, extra_vars)
        except ExternalSystemError as exc:
            logger.error("failed to launch provisioning job template=%s: %s", template_name, exc)
            raise LaunchFailedError(template_name, exc) from exc

        try:
            record = await self.repository.create_provisioning_job(
                external_job_id=job_id,
                template_id=template_id,
                template_name=template_name,
                instance_name=instance_name,
                customer_id=customer_id,
                created_by=created_by,
                launch_parameters=redact_parameters(extra_vars),
            )
        except RepositoryError as exc:
            logger.error("job %s launched but failed to record it: %s", job_id, exc)
            raise PersistenceError(
                f"job {job_id} launched but could not be recorded",
                divergence=Divergence.JOB_UNRECORDED,
                external_job_id=job_id,
            ) from exc

        return ProvisioningResult(
            job_id=job_id,
            status=STATUS_RUNNING,
            instance_name=instance_name,
            customer_id=customer_id,
            record_id=record["id"],
        )

    def _start_monitor_quietly(self, *, external_job_id: int, record_id: int | None) -> None:
        if record_id is None:
            return
        try:
            self.start_monitor(external_job_id=external_job_id, record_id=record_id)
        except Exception:
            logger.exception("failed to start job monitoring for job %s", external_job_id)


@lru_cache
def get_provisioning_service() -> ProvisioningService:
    settings = get_settings()
    repository = get_repository()
    return ProvisioningService(
        awx=get_awx_client(),
        repository=repository,
        supervisor=get_supervisor(),
        audit=AuditLog(repository),
        poll_interval_seconds=settings.job_poll_interval_seconds,
        max_consecutive_poll_failures=settings.job_poll_max_consecutive_failures,
        dedupe_enabled=settings.provision_dedupe_enabled,
    )
