"""PostgreSQL implementation of the execution store.

This module provides `PostgresStore`, the production persistence collaborator
for the orchestrator. It reads profiles and prompt chains, writes the
execution record lifecycle and merges the hourly rollup. Table names honour an
optional schema and table prefix, validated the same way for every table:

    <schema>.<prefix>profiles
    <schema>.<prefix>prompt_chains
    <schema>.<prefix>prompt_executions
    <schema>.<prefix>prompt_metrics_hourly   (unique on chain_id, hour)

Each operation opens its own autocommit connection; transient connection
failures are retried with exponential backoff. The hourly rollup is a single
`INSERT ... ON CONFLICT DO UPDATE` so concurrent executions in the same hour
merge inside Postgres instead of racing a read-modify-write.
"""
from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, Optional

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import Settings
from .models.execution import ExecutionMetrics, ExecutionRecord, ExecutionStatus
from .models.graph import Workflow, parse_workflow

logger = logging.getLogger(__name__)

__all__ = ["PostgresStore"]

_db_retry = retry(
    reraise=True,
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
    retry=retry_if_exception_type(psycopg.OperationalError),
)

_EXECUTION_COLUMNS = (
    "id::text AS id, chain_id::text AS chain_id, org_id::text AS org_id, status, "
    "input_data, output_data, metrics, cost_data, error_details, "
    "n8n_execution_id, started_at, completed_at"
)


def _row_to_record(row: Dict[str, Any]) -> ExecutionRecord:
    metrics = row.get("metrics")
    return ExecutionRecord(
        id=row["id"],
        chain_id=row["chain_id"],
        org_id=row["org_id"],
        status=ExecutionStatus(row.get("status") or ExecutionStatus.PENDING.value),
        input_data=row.get("input_data") or {},
        output_data=row.get("output_data"),
        metrics=ExecutionMetrics.model_validate(metrics) if metrics else None,
        cost_data=row.get("cost_data"),
        error_details=row.get("error_details"),
        n8n_execution_id=row.get("n8n_execution_id"),
        started_at=row["started_at"],
        completed_at=row.get("completed_at"),
    )


class PostgresStore:
    """Execution store backed by the application's PostgreSQL database."""

    def __init__(self, dsn: str, *, schema: Optional[str] = None, table_prefix: str = ""):
        self._dsn = dsn
        self._schema = schema or "public"
        self._table_prefix = table_prefix or ""
        # Basic safety: allow only alnum + underscore in prefix & schema
        if not re.fullmatch(r"[A-Za-z0-9_]+", self._schema):
            raise ValueError("Invalid schema name")
        if not re.fullmatch(r"[A-Za-z0-9_]*", self._table_prefix):
            raise ValueError("Invalid table prefix")
        logger.info(
            "DB init: schema=%s prefix=%r executions_table=%s",
            self._schema,
            self._table_prefix,
            self.table("prompt_executions"),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PostgresStore":
        return cls(
            settings.PG_DSN,
            schema=settings.DB_POSTGRESDB_SCHEMA,
            table_prefix=settings.DB_TABLE_PREFIX,
        )

    def table(self, name: str) -> str:
        """Fully qualified, quoted table name."""
        return f'"{self._schema}"."{self._table_prefix}{name}"'

    @asynccontextmanager
    async def _connect(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        if not self._dsn:
            raise RuntimeError("PG_DSN is empty; cannot establish database connection")
        conn = await psycopg.AsyncConnection.connect(self._dsn, autocommit=True)
        try:
            yield conn
        finally:
            try:
                await conn.close()
            except psycopg.Error:  # pragma: no cover - best effort
                logger.debug("Error closing Postgres connection", exc_info=True)

    async def _fetch_one(self, sql: str, params: tuple) -> Optional[Dict[str, Any]]:
        async with self._connect() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                try:
                    await cur.execute(sql, params)
                except psycopg.errors.UndefinedTable:
                    logger.error(
                        "Table lookup failed (schema=%s, prefix=%r). Set DB_POSTGRESDB_SCHEMA / "
                        "DB_TABLE_PREFIX to match your database.",
                        self._schema,
                        self._table_prefix,
                    )
                    raise
                return await cur.fetchone()

    async def _execute(self, sql: str, params: tuple) -> None:
        async with self._connect() as conn:
            async with conn.cursor() as cur:
                await cur.execute(sql, params)

    @_db_retry
    async def get_profile_org(self, user_id: str) -> Optional[str]:
        row = await self._fetch_one(
            f"SELECT org_id::text AS org_id FROM {self.table('profiles')} WHERE id::text = %s",
            (user_id,),
        )
        return row["org_id"] if row else None

    @_db_retry
    async def get_workflow(self, chain_id: str, org_id: str) -> Optional[Workflow]:
        row = await self._fetch_one(
            f"SELECT id::text AS id, name, description, org_id::text AS org_id, config "
            f"FROM {self.table('prompt_chains')} WHERE id::text = %s AND org_id::text = %s",
            (chain_id, org_id),
        )
        if row is None:
            return None
        return parse_workflow(row)

    # Not retried: a commit whose acknowledgement was lost would insert twice.
    async def insert_execution(
        self,
        chain_id: str,
        org_id: str,
        input_data: Dict[str, Any],
        started_at: datetime,
    ) -> ExecutionRecord:
        row = await self._fetch_one(
            f"INSERT INTO {self.table('prompt_executions')} "
            "(chain_id, org_id, status, input_data, started_at) "
            f"VALUES (%s, %s, %s, %s, %s) RETURNING {_EXECUTION_COLUMNS}",
            (chain_id, org_id, ExecutionStatus.PENDING.value, Jsonb(input_data), started_at),
        )
        if row is None:
            raise RuntimeError("Failed to create execution record")
        return _row_to_record(row)

    @_db_retry
    async def mark_running(self, execution_id: str, n8n_execution_id: Optional[str] = None) -> None:
        await self._execute(
            f"UPDATE {self.table('prompt_executions')} "
            "SET status = %s, n8n_execution_id = COALESCE(%s, n8n_execution_id) WHERE id::text = %s",
            (ExecutionStatus.RUNNING.value, n8n_execution_id, execution_id),
        )

    @_db_retry
    async def complete_execution(
        self,
        execution_id: str,
        *,
        status: ExecutionStatus,
        output_data: Any,
        metrics: ExecutionMetrics,
        cost_data: Optional[Dict[str, Any]],
        error_details: Optional[Dict[str, Any]],
        completed_at: datetime,
    ) -> None:
        await self._execute(
            f"UPDATE {self.table('prompt_executions')} SET status = %s, completed_at = %s, "
            "output_data = %s, metrics = %s, cost_data = %s, error_details = %s "
            "WHERE id::text = %s",
            (
                status.value,
                completed_at,
                Jsonb(output_data) if output_data is not None else None,
                Jsonb(metrics.model_dump()),
                Jsonb(cost_data) if cost_data is not None else None,
                Jsonb(error_details) if error_details is not None else None,
                execution_id,
            ),
        )

    @_db_retry
    async def get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        row = await self._fetch_one(
            f"SELECT {_EXECUTION_COLUMNS} FROM {self.table('prompt_executions')} WHERE id::text = %s",
            (execution_id,),
        )
        return _row_to_record(row) if row else None

    # Not retried: replaying the increment would count the execution twice.
    async def upsert_hourly_metrics(
        self,
        chain_id: str,
        org_id: str,
        hour: datetime,
        *,
        cost: float,
        latency_ms: int,
        failed: bool,
    ) -> None:
        error = 1 if failed else 0
        await self._execute(
            f"INSERT INTO {self.table('prompt_metrics_hourly')} AS m "
            "(chain_id, org_id, hour, executions, total_cost, avg_latency_ms, error_count, success_rate) "
            "VALUES (%s, %s, %s, 1, %s, %s, %s, %s) "
            "ON CONFLICT (chain_id, hour) DO UPDATE SET "
            "executions = m.executions + 1, "
            "total_cost = m.total_cost + EXCLUDED.total_cost, "
            "avg_latency_ms = EXCLUDED.avg_latency_ms, "
            "error_count = m.error_count + EXCLUDED.error_count, "
            "success_rate = ((m.executions + 1) - (m.error_count + EXCLUDED.error_count)) "
            "* 100.0 / (m.executions + 1)",
            (chain_id, org_id, hour, cost, latency_ms, error, 0 if failed else 100),
        )
