from __future__ import annotations

import asyncio
from typing import Any

import pytest

from gateway.core.errors import (
    ConflictError,
    ConflictReason,
    Divergence,
    ExternalSystemError,
    JobNotFoundError,
    LaunchFailedError,
    PersistenceError,
    TemplateNotFoundError,
)
from gateway.services.awx import AwxJob
from gateway.services.monitor import TaskSupervisor
from gateway.services.provisioning import ProvisioningService, redact_parameters


class FakeAwxForScenario:
    def __init__(self) -> None:
        self.polls = 0

    async def resolve_template_id(self, name: str) -> int:
        assert name == "dbaas-create"
        return 42

    async def launch_job(self, template_id: int, extra_vars: dict[str, Any]) -> int:
        return 777

    async def get_job(self, job_id: int) -> AwxJob:
        self.polls += 1
        return AwxJob(id=job_id, status="running" if self.polls < 2 else "successful")


def _service(fake_awx, fake_repository, **overrides: Any) -> ProvisioningService:
    options: dict[str, Any] = {
        "awx": fake_awx,
        "repository": fake_repository,
        "supervisor": TaskSupervisor(shutdown_grace_seconds=1),
        "poll_interval_seconds": 0,
        "max_consecutive_poll_failures": 3,
    }
    options.update(overrides)
    return ProvisioningService(**options)


async def _provision(service: ProvisioningService, **overrides: Any):
    request: dict[str, Any] = {
        "template_name": "pg1",
        "instance_name": "db1",
        "username": "u",
        "password": "p",
        "customer_id": "c1",
        "created_by": "alice@example.com",
    }
    request.update(overrides)
    return await service.provision(**request)


def test_provision_launches_records_and_monitors_to_completion(fake_awx, fake_repository) -> None:
    fake_awx.statuses[777] = ["running", "successful"]
    service = _service(fake_awx, fake_repository)

    async def scenario():
        result = await _provision(service)
        handle = service.supervisor.get("job-monitor-777")
        await handle.wait()
        return result

    result = asyncio.run(scenario())

    assert result.job_id == 777
    assert result.status == "running"
    assert result.instance_name == "db1"
    assert result.customer_id == "c1"

    launch = fake_awx.launches[0]
    assert launch["template_id"] == 42
    assert launch["extra_vars"] == {"instance_name": "db1", "username": "u", "password": "p", "customer_id": "c1"}

    record = fake_repository.jobs[result.record_id]
    assert record["external_job_id"] == 777
    assert record["template_name"] == "pg1"
    assert record["status"] == "completed"
    assert record["launch_parameters"]["password"] == "********"

    audit = fake_repository.history[-1]
    assert audit["resource_type"] == "database_instance"
    assert audit["action_type"] == "create"
    assert audit["status"] == "success"


def test_provision_merges_free_form_parameters(fake_awx, fake_repository) -> None:
    fake_awx.statuses[777] = ["successful"]
    service = _service(fake_awx, fake_repository)

    async def scenario():
        await _provision(service, parameters={"pg_version": "16", "instance_name": "ignored"})
        await service.supervisor.shutdown()

    asyncio.run(scenario())

    extra_vars = fake_awx.launches[0]["extra_vars"]
    assert extra_vars["pg_version"] == "16"
    assert extra_vars["instance_name"] == "db1"


def test_unknown_template_launches_nothing(fake_awx, fake_repository) -> None:
    service = _service(fake_awx, fake_repository)

    with pytest.raises(TemplateNotFoundError):
        asyncio.run(_provision(service, template_name="missing"))

    assert fake_awx.launches == []
    assert fake_repository.jobs == {}
    assert fake_repository.history[-1]["status"] == "error"


def test_launch_failure_creates_no_record(fake_awx, fake_repository) -> None:
    fake_awx.launch_error = ExternalSystemError("awx API error (status 500)", system="awx", status_code=500)
    service = _service(fake_awx, fake_repository)

    with pytest.raises(LaunchFailedError) as excinfo:
        asyncio.run(_provision(service))

    assert excinfo.value.status_code == 500
    assert fake_repository.jobs == {}


def test_unrecorded_launch_surfaces_divergence(fake_awx, fake_repository) -> None:
    fake_repository.fail_on.add("create_provisioning_job")
    service = _service(fake_awx, fake_repository)

    with pytest.raises(PersistenceError) as excinfo:
        asyncio.run(_provision(service))

    assert excinfo.value.divergence is Divergence.JOB_UNRECORDED
    assert excinfo.value.external_job_id == 777
    assert service.supervisor.active == []


def test_audit_failure_does_not_fail_provision(fake_awx, fake_repository) -> None:
    fake_awx.statuses[777] = ["successful"]
    fake_repository.fail_on.add("insert_history")
    service = _service(fake_awx, fake_repository)

    async def scenario():
        result = await _provision(service)
        await service.supervisor.shutdown()
        return result

    assert asyncio.run(scenario()).job_id == 777


def test_monitor_start_failure_is_not_returned(fake_awx, fake_repository) -> None:
    supervisor = TaskSupervisor(shutdown_grace_seconds=1)
    service = _service(fake_awx, fake_repository, supervisor=supervisor)

    async def scenario():
        await supervisor.shutdown()
        return await _provision(service)

    result = asyncio.run(scenario())

    assert result.job_id == 777
    assert fake_repository.jobs[result.record_id]["status"] == "running"


def test_running_ledger_record_blocks_duplicate(fake_awx, fake_repository) -> None:
    fake_awx.statuses[777] = ["running"]
    service = _service(fake_awx, fake_repository)

    async def scenario():
        await _provision(service)
        try:
            await _provision(service, instance_name="db2")
        finally:
            await service.supervisor.shutdown()

    with pytest.raises(ConflictError) as excinfo:
        asyncio.run(scenario())

    assert excinfo.value.reason is ConflictReason.ACTIVE_JOB
    assert excinfo.value.job_id == 777
    assert len(fake_awx.launches) == 1


def test_concurrent_provisions_are_deduplicated(fake_awx, fake_repository) -> None:
    fake_awx.statuses[777] = ["running"]
    fake_awx.launch_delay = 0.01
    service = _service(fake_awx, fake_repository)

    async def scenario():
        results = await asyncio.gather(_provision(service), _provision(service), return_exceptions=True)
        await service.supervisor.shutdown()
        return results

    results = asyncio.run(scenario())

    conflicts = [result for result in results if isinstance(result, ConflictError)]
    assert len(conflicts) == 1
    assert len(fake_awx.launches) == 1


def test_concurrent_provisions_both_launch_when_dedupe_disabled(fake_awx, fake_repository) -> None:
    fake_awx.statuses[777] = ["running"]
    fake_awx.statuses[778] = ["running"]
    fake_awx.launch_delay = 0.01
    service = _service(fake_awx, fake_repository, dedupe_enabled=False)

    async def scenario():
        results = await asyncio.gather(_provision(service), _provision(service))
        await service.supervisor.shutdown()
        return results

    results = asyncio.run(scenario())

    assert sorted(result.job_id for result in results) == [777, 778]
    assert len(fake_repository.jobs) == 2


def test_other_customer_is_not_blocked(fake_awx, fake_repository) -> None:
    fake_awx.statuses[777] = ["running"]
    fake_awx.statuses[778] = ["running"]
    service = _service(fake_awx, fake_repository)

    async def scenario():
        first = await _provision(service)
        second = await _provision(service, customer_id="c2")
        await service.supervisor.shutdown()
        return first, second

    first, second = asyncio.run(scenario())
    assert (first.job_id, second.job_id) == (777, 778)


def test_check_active_job_returns_first_running_job(fake_awx, fake_repository) -> None:
    fake_awx.running[42] = [AwxJob(id=900, status="waiting"), AwxJob(id=901, status="running")]
    service = _service(fake_awx, fake_repository)

    result = asyncio.run(service.check_active_job(customer_id="c1", template_name="pg1"))

    assert result is not None
    assert result.job_id == 900
    assert result.status == "running"


def test_check_active_job_returns_none_when_idle(fake_awx, fake_repository) -> None:
    service = _service(fake_awx, fake_repository)
    assert asyncio.run(service.check_active_job(customer_id="c1", template_name="pg1")) is None

    with pytest.raises(TemplateNotFoundError):
        asyncio.run(service.check_active_job(customer_id="c1", template_name="missing"))


def test_get_job_status_maps_platform_status(fake_awx, fake_repository) -> None:
    fake_awx.statuses[555] = ["error"]
    service = _service(fake_awx, fake_repository)

    result = asyncio.run(service.get_job_status(555))
    assert (result.job_id, result.status) == (555, "failed")

    with pytest.raises(JobNotFoundError):
        asyncio.run(service.get_job_status(556))


def test_resume_monitors_reattaches_running_records(fake_awx, fake_repository) -> None:
    fake_awx.statuses[777] = ["successful"]

    async def scenario():
        await fake_repository.create_provisioning_job(
            external_job_id=777,
            template_id=42,
            template_name="pg1",
            instance_name="db1",
            customer_id="c1",
            created_by="alice",
            launch_parameters={},
        )
        service = _service(fake_awx, fake_repository)
        resumed = await service.resume_monitors()
        await service.supervisor.get("job-monitor-777").wait()
        return resumed

    assert asyncio.run(scenario()) == 1
    assert fake_repository.jobs[1]["status"] == "completed"


def test_redact_parameters_masks_secrets() -> None:
    assert redact_parameters({"password": "p", "Token": "t", "username": "u"}) == {
        "password": "********",
        "Token": "********",
        "username": "u",
    }


def test_end_to_end_launch_and_monitor_scenario(fake_repository) -> None:
    awx = FakeAwxForScenario()
    service = _service(awx, fake_repository)

    async def scenario():
        result = await _provision(service, template_name="dbaas-create", instance_name="pg1")
        record = dict(fake_repository.jobs[result.record_id])
        await service.supervisor.get("job-monitor-777").wait()
        return result, record

    result, record_at_launch = asyncio.run(scenario())

    assert result.job_id == 777
    assert record_at_launch["status"] == "running"
    assert record_at_launch["instance_name"] == "pg1"
    assert record_at_launch["template_id"] == 42
    assert len(fake_repository.jobs) == 1
    final = fake_repository.jobs[result.record_id]
    assert final["status"] == "completed"
    assert final["error_message"] is None


def test_resume_monitors_wraps_ledger_failure(fake_awx, fake_repository) -> None:
    fake_repository.fail_on.add("list_running_provisioning_jobs")
    service = _service(fake_awx, fake_repository)

    with pytest.raises(PersistenceError) as excinfo:
        asyncio.run(service.resume_monitors())

    assert excinfo.value.divergence is None
    assert service.supervisor.active == []
