"""Exception taxonomy for compilation, deployment and execution.

Every error raised by this package derives from `PromptChainError` so API
layers can map the whole family onto transport status codes in one place.

Mapping (suggested):
    NotFound              -> 404
    Forbidden             -> 403
    UnsupportedNodeType   -> 422 (compile failure, nothing deployed)
    InvalidWorkflow       -> 422 (compile failure, nothing deployed)
    AmbiguousDeployment   -> 409
    RemoteEngineError     -> 502
    ExecutionTimeout      -> 504

`ValidationRuleError` never propagates out of an execution: generated
validator code captures a rule's evaluation error as that rule's failure, and
`extraction.rule_errors` reads those captured failures back as instances.
"""
from __future__ import annotations

from typing import Any, Optional

__all__ = [
    "PromptChainError",
    "NotFound",
    "Forbidden",
    "UnsupportedNodeType",
    "InvalidWorkflow",
    "AmbiguousDeployment",
    "RemoteEngineError",
    "ExecutionTimeout",
    "ValidationRuleError",
]


class PromptChainError(Exception):
    """Base class for all package errors."""


class NotFound(PromptChainError):
    """Workflow or execution absent, or owned by another organization."""


class Forbidden(PromptChainError):
    """Requesting user does not belong to the requested organization."""


class UnsupportedNodeType(PromptChainError):
    """Node type tag outside the closed prompt/router/validator/integration set."""

    def __init__(self, node_type: Any, node_id: Optional[str] = None):
        self.node_type = node_type
        self.node_id = node_id
        where = f" (node {node_id})" if node_id else ""
        super().__init__(f"Unknown node type: {node_type!r}{where}")


class InvalidWorkflow(PromptChainError):
    """Authored graph cannot be compiled as written (e.g. it reuses a reserved id)."""


class AmbiguousDeployment(PromptChainError):
    """More than one remote workflow carries the internal workflow's name."""

    def __init__(self, name: str, remote_ids: list[str]):
        self.name = name
        self.remote_ids = remote_ids
        super().__init__(
            f"{len(remote_ids)} n8n workflows named {name!r}: {', '.join(remote_ids)}"
        )


class RemoteEngineError(PromptChainError):
    """Non-2xx response (or transport failure) from the n8n REST API.

    `status_code` is None when the request never produced an HTTP response.
    """

    def __init__(self, status_code: Optional[int], body: str, *, method: str = "", path: str = ""):
        self.status_code = status_code
        self.body = body
        self.method = method
        self.path = path
        super().__init__(f"n8n API Error ({status_code}): {body}")


class ExecutionTimeout(PromptChainError):
    """Completion wait budget exhausted before n8n reported the run finished."""

    def __init__(self, execution_id: str, attempts: int, interval_seconds: float):
        self.execution_id = execution_id
        self.attempts = attempts
        self.interval_seconds = interval_seconds
        super().__init__(
            f"Execution timeout - n8n execution {execution_id} not finished after "
            f"{attempts} polls at {interval_seconds}s"
        )


class ValidationRuleError(PromptChainError):
    """A single validator rule failed to evaluate (captured as a rule failure)."""

    def __init__(self, rule: str, message: str):
        self.rule = rule
        self.message = message
        super().__init__(f"Rule {rule!r} raised: {message}")
