"""Execution orchestrator: runs a prompt chain on n8n and records the outcome.

Lifecycle per request (one independent coroutine, no cross-request lock):

    1. access check     profile org must equal request org      -> Forbidden
    2. fetch            prompt chain by (id, org)               -> NotFound
    3. persist          execution record in `pending`
    4. deploy           DeploymentCache.ensure_deployed
    5. trigger          POST /workflows/{id}/execute {input, timestamp}
                        record -> `running`
    6. wait             CompletionWaiter (bounded poll by default)
    7. extract          logical output + metrics
    8. persist          terminal status, written once
    9. rollup           hourly upsert keyed on (chain_id, hour)

Failures in 1-2 leave no record. Failures from step 4 onward are logged with
the execution id and re-raised; the record stays `pending`/`running` so it is
visible as stuck rather than vanishing. A failed hourly rollup is logged and
does not change the already-persisted result.

Public API:
    WorkflowExecutor.execute(request) -> ExecutionResponse
    WorkflowExecutor.get_execution_status(execution_id, org_id=None)
    WorkflowExecutor.clear_workflow_cache(chain_id=None)
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .completion import CompletionWaiter, PollingCompletionWaiter
from .config import Settings
from .deployment import DeploymentCache
from .engine_client import N8nClient
from .errors import Forbidden, NotFound
from .extraction import extract_metrics, extract_output, rule_errors
from .models.execution import (
    ExecutionMetrics,
    ExecutionRecord,
    ExecutionRequest,
    ExecutionResponse,
    ExecutionStatus,
)
from .models.n8n import EngineExecution
from .store import ExecutionStore
from .telemetry import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

__all__ = ["WorkflowExecutor", "hour_bucket"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hour_bucket(ts: datetime) -> datetime:
    """Truncate `ts` to the start of its hour (UTC for naive values)."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.replace(minute=0, second=0, microsecond=0)


class WorkflowExecutor:
    """Coordinates store, deployment cache, n8n client and completion waiter.

    Args:
        client: n8n REST client.
        store: persistence collaborator.
        deployments: shared deployment cache; one is created when omitted.
        waiter: completion strategy; defaults to a 60 x 1s poll.
        cost_per_token: flat rate for provider usage tokens.
        currency: currency tag stored in `cost_data`.
        clock: injectable UTC clock.
    """

    def __init__(
        self,
        client: N8nClient,
        store: ExecutionStore,
        *,
        deployments: Optional[DeploymentCache] = None,
        waiter: Optional[CompletionWaiter] = None,
        cost_per_token: float = 0.000002,
        currency: str = "USD",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.store = store
        self.deployments = deployments or DeploymentCache(client)
        self.waiter: CompletionWaiter = waiter or PollingCompletionWaiter()
        self.cost_per_token = cost_per_token
        self.currency = currency
        self._clock = clock

    @classmethod
    def from_settings(
        cls, settings: Settings, client: N8nClient, store: ExecutionStore
    ) -> "WorkflowExecutor":
        return cls(
            client,
            store,
            deployments=DeploymentCache(client, registry_path=settings.DEPLOYMENT_REGISTRY_FILE),
            waiter=PollingCompletionWaiter(
                interval_seconds=settings.POLL_INTERVAL_SECONDS,
                max_attempts=settings.POLL_MAX_ATTEMPTS,
            ),
            cost_per_token=settings.COST_PER_TOKEN,
            currency=settings.COST_CURRENCY,
        )

    async def execute(self, request: ExecutionRequest) -> ExecutionResponse:
        with tracer.start_as_current_span("prompt_chain.execute") as span:
            span.set_attribute("prompt_chain.id", request.chain_id)
            span.set_attribute("prompt_chain.org_id", request.org_id)

            profile_org = await self.store.get_profile_org(request.user_id)
            if profile_org != request.org_id:
                logger.warning(
                    "User %s (org %s) denied access to org %s",
                    request.user_id,
                    profile_org,
                    request.org_id,
                )
                raise Forbidden("Access denied to this organization")

            workflow = await self.store.get_workflow(request.chain_id, request.org_id)
            if workflow is None:
                raise NotFound(f"Prompt chain {request.chain_id} not found")

            record = await self.store.insert_execution(
                request.chain_id, request.org_id, request.input_data, self._clock()
            )
            span.set_attribute("prompt_chain.execution_id", record.id)
            logger.info("Execution %s created for prompt chain %s", record.id, request.chain_id)

            try:
                with tracer.start_as_current_span("prompt_chain.deploy"):
                    n8n_workflow_id = await self.deployments.ensure_deployed(workflow, request.org_id)

                with tracer.start_as_current_span("prompt_chain.trigger") as trigger_span:
                    payload = {"input": request.input_data, "timestamp": self._clock().isoformat()}
                    triggered = await self.client.execute_workflow(n8n_workflow_id, payload)
                    trigger_span.set_attribute("n8n.execution_id", triggered.id)
                await self.store.mark_running(record.id, triggered.id)
                logger.info(
                    "Execution %s running as n8n execution %s (workflow %s)",
                    record.id,
                    triggered.id,
                    n8n_workflow_id,
                )

                with tracer.start_as_current_span("prompt_chain.wait"):
                    finished = await self.waiter.wait(self.client, triggered)

                with tracer.start_as_current_span("prompt_chain.persist"):
                    response = await self._finalize(record, finished)
            except Exception as e:
                logger.error("Execution %s failed: %s", record.id, e)
                span.record_exception(e)
                raise

            span.set_attribute("prompt_chain.status", response.status.value)
            return response

    async def _finalize(self, record: ExecutionRecord, finished: EngineExecution) -> ExecutionResponse:
        status = ExecutionStatus.FAILED if finished.failed else ExecutionStatus.COMPLETED
        output = extract_output(finished)
        for rule_error in rule_errors(output):
            logger.warning("Execution %s: %s", record.id, rule_error)
        metrics = extract_metrics(finished, self.cost_per_token, now=self._clock())
        cost_data = self._cost_data(metrics)
        error_details: Optional[Dict[str, Any]] = None
        if finished.error is not None:
            error_details = {"message": finished.error.message}
        elif status is ExecutionStatus.FAILED:
            error_details = {"message": f"n8n execution ended with status {finished.status}"}
        completed_at = self._clock()

        await self.store.complete_execution(
            record.id,
            status=status,
            output_data=output,
            metrics=metrics,
            cost_data=cost_data,
            error_details=error_details,
            completed_at=completed_at,
        )
        logger.info(
            "Execution %s %s: duration=%dms tokens=%d cost=%.6f",
            record.id,
            status.value,
            metrics.duration,
            metrics.tokensUsed,
            metrics.cost,
        )

        try:
            await self.store.upsert_hourly_metrics(
                record.chain_id,
                record.org_id,
                hour_bucket(record.started_at),
                cost=metrics.cost,
                latency_ms=metrics.latency,
                failed=status is ExecutionStatus.FAILED,
            )
        except Exception as e:  # noqa: BLE001 rollup is advisory; terminal record already written
            logger.error("Failed to update hourly metrics for %s: %s", record.chain_id, e)

        final = record.model_copy(
            update={
                "status": status,
                "output_data": output,
                "metrics": metrics,
                "cost_data": cost_data,
                "error_details": error_details,
                "n8n_execution_id": finished.id,
                "completed_at": completed_at,
            }
        )
        return ExecutionResponse.from_record(final)

    def _cost_data(self, metrics: ExecutionMetrics) -> Optional[Dict[str, Any]]:
        if metrics.cost > 0:
            return {"total": metrics.cost, "currency": self.currency}
        return None

    async def get_execution_status(
        self, execution_id: str, org_id: Optional[str] = None
    ) -> ExecutionResponse:
        """Read the persisted record verbatim; no live n8n lookup.

        Raises:
            NotFound: no such record, or it belongs to another org.
        """
        record = await self.store.get_execution(execution_id)
        if record is None or (org_id is not None and record.org_id != org_id):
            raise NotFound("Execution not found")
        return ExecutionResponse.from_record(record)

    def clear_workflow_cache(self, chain_id: Optional[str] = None) -> None:
        self.deployments.invalidate(chain_id)
