"""Output and metric extraction from a finished n8n execution trace.

Logical output:
    The JSON payload of the most recently started non-trigger node's last
    attempt (`data.main[0][0].json`). Nodes whose runs carry no `startTime` are
    not candidates. No candidates, or two nodes sharing the latest start time,
    yield `None` rather than an error.

Metrics:
    duration   stoppedAt - startedAt in ms (now when stoppedAt is missing)
    latency    same as duration
    tokensUsed sum over every item of every attempt of every node of
               `usage.total_tokens` (or `input_tokens + output_tokens` for
               Anthropic-shaped usage) plus `metrics.tokens`
    cost       provider usage tokens * cost_per_token, plus `metrics.cost`

Every recognised shape is summed; an item carrying both `usage` and `metrics`
contributes both.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .errors import ValidationRuleError
from .models.execution import ExecutionMetrics
from .models.n8n import EngineExecution, NodeRun
from .translator import TRIGGER_NODE_NAME

logger = logging.getLogger(__name__)

__all__ = [
    "extract_output",
    "extract_metrics",
    "rule_errors",
    "usage_tokens",
]


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    return 0.0


def usage_tokens(usage: Any) -> int:
    """Token count from a provider usage object (OpenAI or Anthropic shape)."""
    if not isinstance(usage, dict):
        return 0
    if "total_tokens" in usage:
        return _to_int(usage.get("total_tokens"))
    return _to_int(usage.get("input_tokens")) + _to_int(usage.get("output_tokens"))


def _latest_start(runs: List[NodeRun]) -> Optional[int]:
    starts = [r.startTime for r in runs if r.startTime is not None]
    return max(starts) if starts else None


def extract_output(execution: EngineExecution) -> Optional[Dict[str, Any]]:
    candidates: List[Tuple[int, str, List[NodeRun]]] = []
    for node_name, runs in execution.run_data.items():
        if node_name == TRIGGER_NODE_NAME or not runs:
            continue
        started = _latest_start(runs)
        if started is None:
            logger.debug("Execution %s: node %s has no startTime; skipped", execution.id, node_name)
            continue
        candidates.append((started, node_name, runs))

    if not candidates:
        return None
    candidates.sort(key=lambda c: c[0], reverse=True)
    if len(candidates) > 1 and candidates[0][0] == candidates[1][0]:
        logger.warning(
            "Execution %s: nodes %s and %s share the latest start time; output is null",
            execution.id,
            candidates[0][1],
            candidates[1][1],
        )
        return None
    return candidates[0][2][-1].first_item()


def rule_errors(output: Optional[Dict[str, Any]]) -> List[ValidationRuleError]:
    """Validator rules whose evaluation raised, from a validator node's output.

    Generated validator code records such a rule as
    `{"rule": ..., "passed": false, "error": ...}` under `validation.results`.
    """
    if not isinstance(output, dict):
        return []
    validation = output.get("validation")
    if not isinstance(validation, dict) or not isinstance(validation.get("results"), list):
        return []
    return [
        ValidationRuleError(str(result.get("rule", "")), str(result["error"]))
        for result in validation["results"]
        if isinstance(result, dict) and result.get("error") is not None
    ]


def extract_metrics(
    execution: EngineExecution,
    cost_per_token: float,
    *,
    now: Optional[datetime] = None,
) -> ExecutionMetrics:
    """Aggregate duration, tokens and cost for a finished execution.

    Args:
        execution: finished execution (with run data).
        cost_per_token: flat rate applied to provider usage tokens.
        now: clock override for an execution without `stoppedAt`.
    """
    duration = 0
    if execution.startedAt is not None:
        end = execution.stoppedAt or now or datetime.now(timezone.utc)
        start = execution.startedAt
        if (start.tzinfo is None) != (end.tzinfo is None):
            # n8n normally returns aware ISO timestamps; align naive ones to UTC.
            start = start.replace(tzinfo=timezone.utc) if start.tzinfo is None else start
            end = end.replace(tzinfo=timezone.utc) if end.tzinfo is None else end
        duration = max(0, int((end - start).total_seconds() * 1000))

    tokens = 0
    cost = 0.0
    for runs in execution.run_data.values():
        for run in runs:
            for item in run.main_items():
                usage = item.get("usage")
                if isinstance(usage, dict):
                    used = usage_tokens(usage)
                    tokens += used
                    cost += used * cost_per_token
                custom = item.get("metrics")
                if isinstance(custom, dict):
                    tokens += _to_int(custom.get("tokens"))
                    cost += _to_float(custom.get("cost"))

    return ExecutionMetrics(duration=duration, tokensUsed=tokens, cost=cost, latency=duration)
