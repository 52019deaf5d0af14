from __future__ import annotations

import json
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from gateway.core.config import get_settings


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when a write violates a uniqueness rule."""


PROVISIONING_STATUSES = {"running", "completed", "failed"}
TERMINAL_PROVISIONING_STATUSES = {"completed", "failed"}
HISTORY_ACTIONS = {"create", "delete", "get", "list"}
HISTORY_STATUSES = {"success", "error"}

_PROVISIONING_JOB_COLUMNS = """
  id,
  external_job_id,
  template_id,
  template_name,
  instance_name,
  customer_id,
  action_type,
  status::text as status,
  external_status,
  error_message,
  created_by,
  launch_parameters,
  created_at,
  updated_at
"""

_NAMESPACE_COLUMNS = """
  name,
  customer_id,
  created_by,
  created_at,
  updated_at
"""


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ping(self) -> None:
        pool = await self._get_pool()
        try:
            await pool.fetchval("select 1")
        except (asyncpg.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

    async def create_provisioning_job(
        self,
        *,
        external_job_id: int,
        template_id: int,
        template_name: str,
        instance_name: str,
        customer_id: str,
        created_by: str,
        launch_parameters: dict[str, Any],
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                insert into provisioning_jobs (
                  external_job_id,
                  template_id,
                  template_name,
                  instance_name,
                  customer_id,
                  action_type,
                  status,
                  created_by,
                  launch_parameters
                )
                values ($1, $2, $3, $4, $5, 'create', 'running', $6, $7::jsonb)
                returning {_PROVISIONING_JOB_COLUMNS}
                """,
                external_job_id,
                template_id,
                template_name,
                instance_name,
                customer_id,
                created_by,
                json.dumps(launch_parameters),
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError(f"provisioning job already recorded: {external_job_id}") from exc
        except (asyncpg.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError("failed to insert provisioning job") from exc

        if not row:
            raise RepositoryUnavailableError("failed to insert provisioning job")
        return self._provisioning_job_row_to_dict(row)

    async def complete_provisioning_job(
        self,
        *,
        record_id: int,
        status: str,
        external_status: str | None,
        error_message: str | None,
    ) -> bool:
        """Move a running record to a terminal status.

        Returns False when the record is already terminal (or missing); a
        terminal record is never rewritten.
        """
        if status not in TERMINAL_PROVISIONING_STATUSES:
            raise ValueError(f"not a terminal provisioning status: {status}")

        pool = await self._get_pool()
        try:
            updated_id = await pool.fetchval(
                """
                update provisioning_jobs
                set
                  status = $2::provisioning_status,
                  external_status = $3,
                  error_message = $4,
                  updated_at = now()
                where id = $1 and status = 'running'
                returning id
                """,
                record_id,
                status,
                external_status,
                error_message,
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError("failed to update provisioning job") from exc
        return updated_id is not None

    async def get_provisioning_job(self, record_id: int) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                select {_PROVISIONING_JOB_COLUMNS}
                from provisioning_jobs
                where id = $1
                """,
                record_id,
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError("failed to query provisioning jobs") from exc
        if not row:
            raise RepositoryNotFoundError("provisioning job not found")
        return self._provisioning_job_row_to_dict(row)

    async def find_running_provisioning_job(self, *, customer_id: str, template_name: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                select {_PROVISIONING_JOB_COLUMNS}
                from provisioning_jobs
                where customer_id = $1 and template_name = $2 and status = 'running'
                order by created_at asc
                limit 1
                """,
                customer_id,
                template_name,
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError("failed to query provisioning jobs") from exc
        return self._provisioning_job_row_to_dict(row) if row else None

    async def list_running_provisioning_jobs(self, limit: int = 500) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                f"""
                select {_PROVISIONING_JOB_COLUMNS}
                from provisioning_jobs
                where status = 'running'
                order by created_at asc
                limit $1
                """,
                limit,
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError("failed to list running provisioning jobs") from exc
        return [self._provisioning_job_row_to_dict(row) for row in rows]

    async def get_namespace(self, *, name: str, customer_id: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                select {_NAMESPACE_COLUMNS}
                from namespaces
                where name = $1 and customer_id = $2
                """,
                name,
                customer_id,
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError("failed to query namespaces") from exc
        return self._namespace_row_to_dict(row) if row else None

    async def insert_namespace(self, *, name: str, customer_id: str, created_by: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                insert into namespaces (name, customer_id, created_by)
                values ($1, $2, $3)
                returning {_NAMESPACE_COLUMNS}
                """,
                name,
                customer_id,
                created_by,
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError(f"namespace already recorded: {name}") from exc
        except (asyncpg.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError("failed to insert namespace") from exc

        if not row:
            raise RepositoryUnavailableError("failed to insert namespace")
        return self._namespace_row_to_dict(row)

    async def delete_namespace(self, *, name: str, customer_id: str) -> bool:
        pool = await self._get_pool()
        try:
            deleted = await pool.fetchval(
                """
                delete from namespaces
                where name = $1 and customer_id = $2
                returning name
                """,
                name,
                customer_id,
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError("failed to delete namespace") from exc
        return deleted is not None

    async def list_namespaces_by_customer(self, customer_id: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                f"""
                select {_NAMESPACE_COLUMNS}
                from namespaces
                where customer_id = $1
                order by created_at asc, name asc
                """,
                customer_id,
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError("failed to list namespaces") from exc
        return [self._namespace_row_to_dict(row) for row in rows]

    async def insert_history(
        self,
        *,
        customer_id: str,
        resource_type: str,
        action_type: str,
        status: str,
        target_name: str,
        actor: str,
        details: str | None,
        error_message: str | None,
    ) -> None:
        if action_type not in HISTORY_ACTIONS:
            raise ValueError(f"unsupported history action: {action_type}")
        if status not in HISTORY_STATUSES:
            raise ValueError(f"unsupported history status: {status}")

        pool = await self._get_pool()
        try:
            await pool.execute(
                """
                insert into history (
                  customer_id,
                  resource_type,
                  action_type,
                  status,
                  target_name,
                  actor,
                  details,
                  error_message
                )
                values ($1, $2, $3::history_action, $4::history_status, $5, $6, $7, $8)
                """,
                customer_id,
                resource_type,
                action_type,
                status,
                target_name,
                actor,
                self._coerce_text(details),
                self._coerce_text(error_message),
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError("failed to insert history record") from exc

    async def list_history(self, *, customer_id: str, limit: int, offset: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select
                  id,
                  customer_id,
                  resource_type,
                  action_type::text as action_type,
                  status::text as status,
                  target_name,
                  actor,
                  details,
                  error_message,
                  created_at
                from history
                where customer_id = $1
                order by created_at desc, id desc
                limit $2 offset $3
                """,
                customer_id,
                limit,
                offset,
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError("failed to list history") from exc
        return [
            {
                "id": int(row["id"]),
                "customer_id": row["customer_id"],
                "resource_type": row["resource_type"],
                "action_type": row["action_type"],
                "status": row["status"],
                "target_name": row["target_name"],
                "actor": row["actor"],
                "details": row["details"],
                "error_message": row["error_message"],
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("GW_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _provisioning_job_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        launch_parameters = row["launch_parameters"]
        if isinstance(launch_parameters, str):
            try:
                launch_parameters = json.loads(launch_parameters)
            except json.JSONDecodeError:
                launch_parameters = {}
        if not isinstance(launch_parameters, dict):
            launch_parameters = {}

        return {
            "id": int(row["id"]),
            "external_job_id": int(row["external_job_id"]),
            "template_id": int(row["template_id"]),
            "template_name": row["template_name"],
            "instance_name": row["instance_name"],
            "customer_id": row["customer_id"],
            "action_type": row["action_type"],
            "status": row["status"],
            "external_status": row["external_status"],
            "error_message": row["error_message"],
            "created_by": row["created_by"],
            "launch_parameters": launch_parameters,
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    @staticmethod
    def _namespace_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "name": row["name"],
            "customer_id": row["customer_id"],
            "created_by": row["created_by"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    @staticmethod
    def _coerce_text(value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
