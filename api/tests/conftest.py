from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import pytest

from gateway.core.errors import ConflictError, ConflictReason, ExternalSystemError, NotFoundError
from gateway.services.awx import AwxJob
from gateway.services.repository import RepositoryConflictError, RepositoryUnavailableError


class FakeRepository:
    def __init__(self) -> None:
        self.jobs: dict[int, dict[str, Any]] = {}
        self.namespaces: dict[tuple[str, str], dict[str, Any]] = {}
        self.history: list[dict[str, Any]] = []
        self.fail_on: set[str] = set()
        self.completions: list[dict[str, Any]] = []
        self._next_id = 0

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail_on:
            raise RepositoryUnavailableError(f"{operation} failed")

    async def ping(self) -> None:
        self._maybe_fail("ping")

    async def close(self) -> None:
        return None

    async def create_provisioning_job(self, **fields: Any) -> dict[str, Any]:
        self._maybe_fail("create_provisioning_job")
        self._next_id += 1
        now = datetime.now(timezone.utc)
        record = {
            "id": self._next_id,
            "action_type": "create",
            "status": "running",
            "external_status": None,
            "error_message": None,
            "created_at": now,
            "updated_at": now,
            **fields,
        }
        self.jobs[record["id"]] = record
        return record

    async def complete_provisioning_job(
        self,
        *,
        record_id: int,
        status: str,
        external_status: str | None,
        error_message: str | None,
    ) -> bool:
        self._maybe_fail("complete_provisioning_job")
        self.completions.append({"record_id": record_id, "status": status})
        record = self.jobs.get(record_id)
        if record is None or record["status"] != "running":
            return False
        record.update(status=status, external_status=external_status, error_message=error_message)
        return True

    async def find_running_provisioning_job(self, *, customer_id: str, template_name: str) -> dict[str, Any] | None:
        self._maybe_fail("find_running_provisioning_job")
        for record in self.jobs.values():
            if (
                record["customer_id"] == customer_id
                and record["template_name"] == template_name
                and record["status"] == "running"
            ):
                return record
        return None

    async def list_running_provisioning_jobs(self, limit: int = 500) -> list[dict[str, Any]]:
        self._maybe_fail("list_running_provisioning_jobs")
        return [record for record in self.jobs.values() if record["status"] == "running"][:limit]

    async def get_namespace(self, *, name: str, customer_id: str) -> dict[str, Any] | None:
        self._maybe_fail("get_namespace")
        return self.namespaces.get((name, customer_id))

    async def insert_namespace(self, *, name: str, customer_id: str, created_by: str) -> dict[str, Any]:
        self._maybe_fail("insert_namespace")
        if (name, customer_id) in self.namespaces:
            raise RepositoryConflictError(f"namespace already recorded: {name}")
        now = datetime.now(timezone.utc)
        record = {
            "name": name,
            "customer_id": customer_id,
            "created_by": created_by,
            "created_at": now,
            "updated_at": now,
        }
        self.namespaces[(name, customer_id)] = record
        return record

    async def delete_namespace(self, *, name: str, customer_id: str) -> bool:
        self._maybe_fail("delete_namespace")
        return self.namespaces.pop((name, customer_id), None) is not None

    async def list_namespaces_by_customer(self, customer_id: str) -> list[dict[str, Any]]:
        self._maybe_fail("list_namespaces_by_customer")
        return [record for (_, owner), record in self.namespaces.items() if owner == customer_id]

    async def insert_history(self, **fields: Any) -> None:
        self._maybe_fail("insert_history")
        self.history.append({"id": len(self.history) + 1, "created_at": datetime.now(timezone.utc), **fields})

    async def list_history(self, *, customer_id: str, limit: int, offset: int) -> list[dict[str, Any]]:
        self._maybe_fail("list_history")
        rows = [row for row in reversed(self.history) if row["customer_id"] == customer_id]
        return rows[offset : offset + limit]


class FakeAwxClient:
    """Scripted platform: ``statuses[job_id]`` is consumed one entry per ``get_job`` call."""

    def __init__(self, templates: dict[str, int] | None = None, first_job_id: int = 777) -> None:
        self.templates = templates if templates is not None else {"pg1": 42}
        self.statuses: dict[int, list[str | Exception]] = {}
        self.launches: list[dict[str, Any]] = []
        self.running: dict[int, list[AwxJob]] = {}
        self.launch_error: ExternalSystemError | None = None
        self.launch_delay = 0.0
        self.get_job_calls = 0
        self._next_job_id = first_job_id

    async def resolve_template_id(self, name: str) -> int:
        if name not in self.templates:
            raise NotFoundError(f"job template not found: {name}")
        return self.templates[name]

    async def launch_job(self, template_id: int, extra_vars: dict[str, Any]) -> int:
        if self.launch_delay:
            await asyncio.sleep(self.launch_delay)
        if self.launch_error is not None:
            raise self.launch_error
        job_id = self._next_job_id
        self._next_job_id += 1
        self.launches.append({"template_id": template_id, "job_id": job_id, "extra_vars": extra_vars})
        return job_id

    async def get_job(self, job_id: int) -> AwxJob:
        self.get_job_calls += 1
        script = self.statuses.get(job_id)
        if script is None:
            raise NotFoundError(f"awx job not found: {job_id}")
        step = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(step, Exception):
            raise step
        return AwxJob(id=job_id, status=step)

    async def list_running_jobs(self, template_id: int) -> list[AwxJob]:
        return list(self.running.get(template_id, []))

    async def ping(self) -> None:
        return None


class FakeClusterClient:
    def __init__(self) -> None:
        self.namespaces: dict[str, dict[str, Any]] = {}
        self.fail_on: set[str] = set()
        self.created: list[str] = []
        self.deleted: list[str] = []

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail_on:
            raise ExternalSystemError(f"{operation} failed", system="kubernetes", status_code=500)

    async def get_namespace(self, name: str) -> dict[str, Any] | None:
        self._maybe_fail("get_namespace")
        return self.namespaces.get(name)

    async def create_namespace(self, name: str, annotations: dict[str, str]) -> dict[str, Any]:
        self._maybe_fail("create_namespace")
        if name in self.namespaces:
            raise ConflictError("namespace name is not available", reason=ConflictReason.EXISTS_IN_CLUSTER)
        body = {"metadata": {"name": name, "annotations": annotations}}
        self.namespaces[name] = body
        self.created.append(name)
        return body

    async def delete_namespace(self, name: str) -> bool:
        self._maybe_fail("delete_namespace")
        self.deleted.append(name)
        return self.namespaces.pop(name, None) is not None

    async def ping(self) -> None:
        self._maybe_fail("ping")


@pytest.fixture
def fake_repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def fake_awx() -> FakeAwxClient:
    return FakeAwxClient()


@pytest.fixture
def fake_cluster() -> FakeClusterClient:
    return FakeClusterClient()
