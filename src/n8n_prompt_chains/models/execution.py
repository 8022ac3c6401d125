"""Models for execution requests, persisted execution records and responses.

`ExecutionRecord` mirrors a `prompt_executions` row. Status moves
`pending -> running -> completed | failed`; the terminal write happens once and
the record is immutable afterwards.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

__all__ = [
    "ExecutionStatus",
    "TERMINAL_STATUSES",
    "ExecutionMetrics",
    "ExecutionRequest",
    "ExecutionRecord",
    "ExecutionResponseMetrics",
    "ExecutionResponse",
]


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({ExecutionStatus.COMPLETED, ExecutionStatus.FAILED})


class ExecutionMetrics(BaseModel):
    """Metrics derived from an n8n execution trace."""

    duration: int = 0  # ms
    tokensUsed: int = 0
    cost: float = 0.0
    latency: int = 0  # ms; equals duration today, kept separate for the hourly rollup


class ExecutionRequest(BaseModel):
    chain_id: str
    org_id: str
    user_id: str
    input_data: Dict[str, Any] = Field(default_factory=dict)


class ExecutionRecord(BaseModel):
    id: str
    chain_id: str
    org_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    input_data: Dict[str, Any] = Field(default_factory=dict)
    output_data: Optional[Any] = None
    metrics: Optional[ExecutionMetrics] = None
    cost_data: Optional[Dict[str, Any]] = None
    error_details: Optional[Dict[str, Any]] = None
    n8n_execution_id: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None


class ExecutionResponseMetrics(BaseModel):
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    duration: Optional[int] = None
    tokensUsed: Optional[int] = None
    cost: Optional[float] = None


class ExecutionResponse(BaseModel):
    executionId: str
    status: ExecutionStatus
    output: Optional[Any] = None
    error: Optional[str] = None
    metrics: ExecutionResponseMetrics = Field(default_factory=ExecutionResponseMetrics)

    @classmethod
    def from_record(cls, record: ExecutionRecord) -> "ExecutionResponse":
        metrics = record.metrics
        return cls(
            executionId=record.id,
            status=record.status,
            output=record.output_data,
            error=(record.error_details or {}).get("message"),
            metrics=ExecutionResponseMetrics(
                startTime=record.started_at,
                endTime=record.completed_at,
                duration=metrics.duration if metrics else None,
                tokensUsed=metrics.tokensUsed if metrics else None,
                cost=(record.cost_data or {}).get("total"),
            ),
        )
