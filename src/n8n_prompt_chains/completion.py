"""Strategies for waiting until an n8n execution reaches a terminal state.

The orchestrator depends only on the `CompletionWaiter` protocol, so the
fixed-interval poll can later be swapped for a webhook callback or an
exponential schedule without touching the execution lifecycle.
"""
from __future__ import annotations

import logging
from typing import Optional, Protocol

from tenacity import AsyncRetrying, RetryError, retry_if_result, stop_after_attempt, wait_fixed

from .engine_client import N8nClient
from .errors import ExecutionTimeout
from .models.n8n import EngineExecution

logger = logging.getLogger(__name__)

__all__ = ["CompletionWaiter", "PollingCompletionWaiter"]


class CompletionWaiter(Protocol):
    async def wait(self, client: N8nClient, execution: EngineExecution) -> EngineExecution:
        """Return the finished execution or raise `ExecutionTimeout`."""
        ...


def _unfinished(result: Optional[EngineExecution]) -> bool:
    return result is None or not result.finished


class PollingCompletionWaiter:
    """Bounded poll of `GET /executions/{id}` at a fixed interval.

    The trigger response short-circuits when it is already finished. Otherwise
    at most `max_attempts` status reads happen, `interval_seconds` apart; the
    first finished response wins. Remote errors during a poll are not retried
    and propagate unchanged.
    """

    def __init__(self, interval_seconds: float = 1.0, max_attempts: int = 60):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts

    async def wait(self, client: N8nClient, execution: EngineExecution) -> EngineExecution:
        if execution.finished:
            return execution

        result: Optional[EngineExecution] = None
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_fixed(self.interval_seconds),
                retry=retry_if_result(_unfinished),
            ):
                with attempt:
                    result = await client.get_execution(execution.id)
                    logger.debug(
                        "Poll %d/%d for n8n execution %s: finished=%s status=%s",
                        attempt.retry_state.attempt_number,
                        self.max_attempts,
                        execution.id,
                        result.finished,
                        result.status,
                    )
                if not attempt.retry_state.outcome.failed:
                    attempt.retry_state.set_result(result)
        except RetryError as e:
            logger.warning(
                "n8n execution %s not finished after %d polls", execution.id, self.max_attempts
            )
            raise ExecutionTimeout(execution.id, self.max_attempts, self.interval_seconds) from e

        assert result is not None
        return result
