"""Pydantic models for the n8n side of the bridge.

Two families live here:

* Definitions we send: `N8nNode`, `N8nConnection` and `N8nWorkflow` describe
  a compiled workflow in n8n's REST format. Connections are an adjacency map
  `{source_id: {"main": [[conn, ...], [conn, ...]]}}` where the outer list is
  indexed by output port.
* Results we read: `EngineExecution` wraps the execution resource returned by
  `/executions/{id}`; its `data.resultData.runData` maps node names to an
  ordered list of `NodeRun` attempts.

Field names mirror n8n's camelCase JSON so responses validate directly. Unknown
fields are ignored; n8n adds keys between versions.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "N8nNode",
    "N8nConnection",
    "N8nNodeConnections",
    "N8nWorkflow",
    "NodeRun",
    "ResultData",
    "ExecutionData",
    "ExecutionErrorInfo",
    "EngineExecution",
    "N8nCredential",
]


def _id_to_str(v: Any) -> Any:
    # n8n returns numeric ids for executions (and for workflows on older versions).
    if isinstance(v, int) and not isinstance(v, bool):
        return str(v)
    return v


class N8nNode(BaseModel):
    """A node definition inside an n8n workflow."""

    id: str
    name: str
    type: str
    typeVersion: float = 1
    position: Tuple[float, float] = (0, 0)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    credentials: Optional[Dict[str, Any]] = None


class N8nConnection(BaseModel):
    """One downstream target on an output port."""

    node: str
    type: str = "main"
    index: int = 0


class N8nNodeConnections(BaseModel):
    """Output ports of one source node; `main[i]` lists targets of port i."""

    main: List[List[N8nConnection]] = Field(default_factory=list)


class N8nWorkflow(BaseModel):
    """Workflow resource as created, updated or listed through the REST API."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: str = ""
    nodes: List[N8nNode] = Field(default_factory=list)
    connections: Dict[str, N8nNodeConnections] = Field(default_factory=dict)
    active: Optional[bool] = None
    settings: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return _id_to_str(v)

    def to_payload(self) -> Dict[str, Any]:
        """Serialize for POST/PATCH bodies (drops `id` and unset optionals)."""
        return self.model_dump(exclude={"id"}, exclude_none=True)


class NodeRun(BaseModel):
    """Represents a single runtime attempt of a node within an execution."""

    model_config = ConfigDict(extra="ignore")

    startTime: Optional[int] = None
    executionTime: Optional[int] = None
    executionStatus: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[Dict[str, Any]] = None

    def main_items(self) -> List[Dict[str, Any]]:
        """Flatten `data.main` ports into the list of item `json` payloads."""
        items: List[Dict[str, Any]] = []
        ports = self.data.get("main") if isinstance(self.data, dict) else None
        if not isinstance(ports, list):
            return items
        for port in ports:
            if not isinstance(port, list):
                continue
            for item in port:
                if isinstance(item, dict) and isinstance(item.get("json"), dict):
                    items.append(item["json"])
        return items

    def first_item(self) -> Optional[Dict[str, Any]]:
        """`data.main[0][0].json` or None."""
        ports = self.data.get("main") if isinstance(self.data, dict) else None
        if not isinstance(ports, list) or not ports:
            return None
        first_port = ports[0]
        if not isinstance(first_port, list) or not first_port:
            return None
        item = first_port[0]
        if isinstance(item, dict) and isinstance(item.get("json"), dict):
            return item["json"]
        return None


class ResultData(BaseModel):
    """Contains the `runData`, which maps node names to their execution runs."""

    model_config = ConfigDict(extra="ignore")

    runData: Dict[str, List[NodeRun]] = Field(default_factory=dict)


class ExecutionData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    resultData: ResultData = Field(default_factory=ResultData)


class ExecutionErrorInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str = "Unknown error"
    stack: Optional[str] = None


class EngineExecution(BaseModel):
    """An n8n execution as returned by trigger and status endpoints."""

    model_config = ConfigDict(extra="ignore")

    id: str
    finished: bool = False
    mode: Optional[str] = None
    status: Optional[str] = None
    startedAt: Optional[datetime] = None
    stoppedAt: Optional[datetime] = None
    workflowId: Optional[str] = None
    data: Optional[ExecutionData] = None
    error: Optional[ExecutionErrorInfo] = None

    @field_validator("id", "workflowId", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        return _id_to_str(v)

    @property
    def run_data(self) -> Dict[str, List[NodeRun]]:
        if self.data is None:
            return {}
        return self.data.resultData.runData

    @property
    def failed(self) -> bool:
        return self.error is not None or (self.status or "").lower() in {"error", "crashed", "failed"}


class N8nCredential(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: str
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return _id_to_str(v)
