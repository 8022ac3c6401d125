"""Persistence collaborator consumed by the execution orchestrator.

`PostgresStore` in `db.py` is the production implementation; tests provide an
in-memory one. Implementations must make `upsert_hourly_metrics` an atomic
merge keyed on (chain_id, hour) so concurrent executions in the same hour never
lose each other's counts.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from .models.execution import ExecutionMetrics, ExecutionRecord, ExecutionStatus
from .models.graph import Workflow

__all__ = ["ExecutionStore"]


class ExecutionStore(Protocol):
    async def get_profile_org(self, user_id: str) -> Optional[str]:
        """Organization id of the user's profile, or None if unknown."""
        ...

    async def get_workflow(self, chain_id: str, org_id: str) -> Optional[Workflow]:
        """The prompt chain owned by `org_id`, or None."""
        ...

    async def insert_execution(
        self,
        chain_id: str,
        org_id: str,
        input_data: Dict[str, Any],
        started_at: datetime,
    ) -> ExecutionRecord:
        """Create a `pending` record and return it with its assigned id."""
        ...

    async def mark_running(self, execution_id: str, n8n_execution_id: Optional[str] = None) -> None:
        ...

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
        """Terminal write; called once per execution."""
        ...

    async def get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        ...

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
        ...
