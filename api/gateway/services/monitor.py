"""Background tracking of launched automation jobs.

One ``JobMonitor`` follows one external job to a terminal state and writes
the outcome to the ledger exactly once. Monitors run under the process-wide
``TaskSupervisor``, never under the request that launched the job.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from opentelemetry import trace

from gateway.core.config import get_settings
from gateway.core.errors import ExternalSystemError, NotFoundError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
TERMINAL_STATUSES = {STATUS_COMPLETED, STATUS_FAILED}
UNKNOWN_EXTERNAL_STATUS = "unknown"

_EXTERNAL_STATUS_MAP = {
    "successful": STATUS_COMPLETED,
    "failed": STATUS_FAILED,
    "error": STATUS_FAILED,
    "canceled": STATUS_FAILED,
    "pending": STATUS_RUNNING,
    "waiting": STATUS_RUNNING,
    "running": STATUS_RUNNING,
}


def map_external_status(external_status: str) -> str:
    """Map a raw platform status to the ledger status; unknown values pass through."""
    return _EXTERNAL_STATUS_MAP.get(external_status, external_status)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


@dataclass(slots=True)
class MonitorOutcome:
    status: str | None
    external_status: str | None
    error_message: str | None
    recorded: bool
    cancelled: bool = False


class JobMonitor:
    def __init__(
        self,
        *,
        client: Any,
        repository: Any,
        external_job_id: int,
        record_id: int,
        poll_interval_seconds: float,
        max_consecutive_failures: int,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        self.client = client
        self.repository = repository
        self.external_job_id = external_job_id
        self.record_id = record_id
        self.poll_interval_seconds = max(0.0, poll_interval_seconds)
        self.max_consecutive_failures = max(1, max_consecutive_failures)
        self.stop_event = stop_event or asyncio.Event()

    async def run(self) -> MonitorOutcome:
        logger.info("job monitor started job_id=%s record_id=%s", self.external_job_id, self.record_id)
        try:
            return await self._poll_until_terminal()
        except Exception as exc:
            logger.exception("job monitor crashed job_id=%s", self.external_job_id)
            return await self._finish(
                STATUS_FAILED,
                UNKNOWN_EXTERNAL_STATUS,
                f"job monitoring failed: {exc}",
            )

    async def _poll_until_terminal(self) -> MonitorOutcome:
        consecutive_failures = 0
        while True:
            if await self._stop_requested():
                logger.info("job monitor stopped before terminal state job_id=%s", self.external_job_id)
                return MonitorOutcome(
                    status=None,
                    external_status=None,
                    error_message=None,
                    recorded=False,
                    cancelled=True,
                )

            with tracer.start_as_current_span("monitor.poll") as span:
                span.set_attribute("job.id", self.external_job_id)
                try:
                    job = await self.client.get_job(self.external_job_id)
                except NotFoundError as exc:
                    logger.error("job vanished from platform job_id=%s: %s", self.external_job_id, exc)
                    return await self._finish(STATUS_FAILED, UNKNOWN_EXTERNAL_STATUS, str(exc))
                except ExternalSystemError as exc:
                    consecutive_failures += 1
                    logger.warning(
                        "job status fetch failed job_id=%s attempt=%s/%s: %s",
                        self.external_job_id,
                        consecutive_failures,
                        self.max_consecutive_failures,
                        exc,
                    )
                    if consecutive_failures >= self.max_consecutive_failures:
                        return await self._finish(
                            STATUS_FAILED,
                            UNKNOWN_EXTERNAL_STATUS,
                            f"giving up after {consecutive_failures} consecutive status fetch failures: {exc}",
                        )
                    continue

                consecutive_failures = 0
                status = map_external_status(job.status)
                span.set_attribute("job.status", job.status)
                logger.info("job status job_id=%s status=%s", self.external_job_id, job.status)
                if not is_terminal(status):
                    continue

                error_message = None if status == STATUS_COMPLETED else f"job finished with status: {job.status}"
                return await self._finish(status, job.status, error_message)

    async def _stop_requested(self) -> bool:
        if self.stop_event.is_set():
            return True
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=self.poll_interval_seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _finish(self, status: str, external_status: str, error_message: str | None) -> MonitorOutcome:
        recorded = False
        try:
            recorded = await self.repository.complete_provisioning_job(
                record_id=self.record_id,
                status=status,
                external_status=external_status,
                error_message=error_message,
            )
        except Exception:
            logger.exception(
                "failed to record terminal status job_id=%s record_id=%s status=%s",
                self.external_job_id,
                self.record_id,
                status,
            )
        else:
            if recorded:
                logger.info("job %s finished with status=%s", self.external_job_id, status)
            else:
                logger.warning("record %s was already terminal; outcome %s not written", self.record_id, status)
        return MonitorOutcome(
            status=status,
            external_status=external_status,
            error_message=error_message,
            recorded=recorded,
        )


class MonitorHandle:
    def __init__(self, name: str, stop_event: asyncio.Event) -> None:
        self.name = name
        self.stop_event = stop_event
        self.task: asyncio.Task | None = None

    def cancel(self) -> None:
        """Ask the task to stop at its next poll boundary."""
        self.stop_event.set()

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    async def wait(self) -> Any:
        if self.task is None:
            return None
        return await self.task


class TaskSupervisor:
    def __init__(self, shutdown_grace_seconds: float = 35.0) -> None:
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self._handles: dict[str, MonitorHandle] = {}
        self._closed = False

    @property
    def active(self) -> list[str]:
        return sorted(self._handles)

    def get(self, name: str) -> MonitorHandle | None:
        return self._handles.get(name)

    def spawn(self, name: str, factory: Callable[[asyncio.Event], Awaitable[Any]]) -> MonitorHandle:
        if self._closed:
            raise RuntimeError("task supervisor is shut down")
        existing = self._handles.get(name)
        if existing is not None and not existing.done:
            return existing

        handle = MonitorHandle(name, asyncio.Event())
        handle.task = asyncio.create_task(factory(handle.stop_event), name=name)
        self._handles[name] = handle
        handle.task.add_done_callback(lambda task: self._on_done(handle, task))
        return handle

    async def shutdown(self) -> None:
        self._closed = True
        handles = list(self._handles.values())
        if not handles:
            return

        logger.info("stopping %s background task(s)", len(handles))
        for handle in handles:
            handle.cancel()

        tasks = [handle.task for handle in handles if handle.task is not None]
        _, pending = await asyncio.wait(tasks, timeout=self.shutdown_grace_seconds)
        for task in pending:
            logger.warning("background task %s did not stop within grace period; cancelling", task.get_name())
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _on_done(self, handle: MonitorHandle, task: asyncio.Task) -> None:
        if self._handles.get(handle.name) is handle:
            del self._handles[handle.name]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background task %s failed", handle.name, exc_info=exc)


@lru_cache
def get_supervisor() -> TaskSupervisor:
    return TaskSupervisor(shutdown_grace_seconds=get_settings().monitor_shutdown_grace_seconds)
