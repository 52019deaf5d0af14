from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)

RESOURCE_NAMESPACE = "namespace"
RESOURCE_DATABASE_INSTANCE = "database_instance"


class AuditLog:
    """Append-only recorder of action outcomes.

    Writes are best-effort: a failed write is logged and never reaches the
    operation that triggered it.
    """

    def __init__(self, repository: Any) -> None:
        self.repository = repository

    async def record(
        self,
        *,
        customer_id: str | None,
        resource_type: str,
        action: str,
        outcome: str,
        target: str | None,
        actor: str | None,
        details: str | None = None,
        error: str | None = None,
    ) -> None:
        try:
            await self.repository.insert_history(
                customer_id=customer_id or "",
                resource_type=resource_type,
                action_type=action,
                status=outcome,
                target_name=target or "",
                actor=actor or "",
                details=details,
                error_message=error,
            )
        except Exception as exc:
            logger.warning(
                "failed to record history customer_id=%s action=%s outcome=%s target=%s: %s",
                customer_id,
                action,
                outcome,
                target,
                exc,
            )

    async def success(self, **fields: Any) -> None:
        await self.record(outcome="success", **fields)

    async def failure(self, *, error: str, **fields: Any) -> None:
        await self.record(outcome="error", error=error, **fields)
