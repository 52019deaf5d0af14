"""Error taxonomy shared by the gateway services and the request layer.

Every failure a service can surface is one of the classes below. The request
layer maps them to transport codes by class (or by ``kind``), never by
inspecting the message text.
"""

from __future__ import annotations

from enum import Enum
from typing import ClassVar


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    EXTERNAL_SYSTEM = "external_system"
    PERSISTENCE = "persistence"
    FORBIDDEN = "forbidden"


class ConflictReason(str, Enum):
    EXISTS_IN_CLUSTER = "exists_in_cluster"
    EXISTS_IN_STORE = "exists_in_store"
    ACTIVE_JOB = "active_job"


class Divergence(str, Enum):
    """Which system holds state the other one is missing after a partial failure."""

    JOB_UNRECORDED = "job_unrecorded"
    CLUSTER_ORPHAN = "cluster_orphan"
    RECORD_ORPHAN = "record_orphan"


class GatewayError(Exception):
    """Base gateway error."""

    kind: ClassVar[ErrorKind]

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(GatewayError):
    """Raised when caller input is malformed."""

    kind = ErrorKind.VALIDATION


class NotFoundError(GatewayError):
    """Raised when a template, job or namespace is absent or not owned by the caller."""

    kind = ErrorKind.NOT_FOUND


class TemplateNotFoundError(NotFoundError):
    def __init__(self, template_name: str) -> None:
        super().__init__(f"job template not found: {template_name}")
        self.template_name = template_name


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id: int) -> None:
        super().__init__(f"job not found: {job_id}")
        self.job_id = job_id


class NamespaceNotFoundError(NotFoundError):
    def __init__(self, name: str) -> None:
        super().__init__("namespace not found in your tenant")
        self.name = name


class ConflictError(GatewayError):
    """Raised when the requested resource already exists somewhere."""

    kind = ErrorKind.CONFLICT

    def __init__(self, message: str, *, reason: ConflictReason, job_id: int | None = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.job_id = job_id


class ExternalSystemError(GatewayError):
    """Raised when the automation platform or the cluster API fails."""

    kind = ErrorKind.EXTERNAL_SYSTEM

    def __init__(self, message: str, *, system: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.system = system
        self.status_code = status_code


class LaunchFailedError(ExternalSystemError):
    """Raised when a job launch fails; no ledger record exists for it."""

    def __init__(self, template_name: str, cause: ExternalSystemError) -> None:
        super().__init__(
            f"job launch failed for template {template_name}: {cause.message}",
            system=cause.system,
            status_code=cause.status_code,
        )
        self.template_name = template_name


class PersistenceError(GatewayError):
    """Raised when the ledger cannot be read or written.

    ``divergence`` is set when an external mutation already happened and the
    two systems now disagree.
    """

    kind = ErrorKind.PERSISTENCE

    def __init__(
        self,
        message: str,
        *,
        divergence: Divergence | None = None,
        external_job_id: int | None = None,
    ) -> None:
        super().__init__(message)
        self.divergence = divergence
        self.external_job_id = external_job_id


class ForbiddenError(GatewayError):
    """Reserved for role checks in the request layer."""

    kind = ErrorKind.FORBIDDEN
