"""Pydantic models for authored prompt-chain graphs.

These models give a typed, validated structure to the `config` JSON saved by
the visual designer (`{"nodes": [...], "edges": [...]}`). Field names keep the
designer's camelCase spelling so stored rows validate without translation.

Node data is a closed tagged union keyed by the node `type`:

    prompt       -> PromptNodeData      (template, model, temperature, maxTokens)
    router       -> RouterNodeData      (ordered condition strings)
    validator    -> ValidatorNodeData   (ordered rule strings)
    integration  -> IntegrationNodeData (integrationType + kind-specific extras)

Nodes are frozen: changing a node's type means replacing the node, never
mutating it. `layout` position is carried through to n8n but has no execution
meaning.
"""
from __future__ import annotations

import json
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..errors import UnsupportedNodeType

__all__ = [
    "NODE_TYPES",
    "NodePosition",
    "PromptNodeData",
    "RouterNodeData",
    "ValidatorNodeData",
    "IntegrationNodeData",
    "PromptNode",
    "RouterNode",
    "ValidatorNode",
    "IntegrationNode",
    "WorkflowNode",
    "WorkflowEdge",
    "WorkflowConfig",
    "Workflow",
    "parse_workflow",
]

NODE_TYPES = ("prompt", "router", "validator", "integration")


class NodePosition(BaseModel):
    """Canvas coordinates (layout only)."""

    model_config = ConfigDict(frozen=True)

    x: float = 0
    y: float = 0


class _NodeData(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    label: Optional[str] = None


class PromptNodeData(_NodeData):
    prompt: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    maxTokens: Optional[int] = Field(default=None, gt=0)


class RouterNodeData(_NodeData):
    conditions: List[str] = Field(default_factory=list)


class ValidatorNodeData(_NodeData):
    validationRules: List[str] = Field(default_factory=list)


class IntegrationNodeData(_NodeData):
    """Integration kind plus free-form kind-specific parameters.

    Known extras: `channel` (chat), `webhookUrl` (webhook). Anything else the
    designer stores is retained in `model_extra`.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    integrationType: Optional[str] = None
    channel: Optional[str] = None
    webhookUrl: Optional[str] = None


class _BaseNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    position: NodePosition = Field(default_factory=NodePosition)

    @property
    def label(self) -> Optional[str]:
        return getattr(self, "data").label


class PromptNode(_BaseNode):
    type: Literal["prompt"] = "prompt"
    data: PromptNodeData = Field(default_factory=PromptNodeData)


class RouterNode(_BaseNode):
    type: Literal["router"] = "router"
    data: RouterNodeData = Field(default_factory=RouterNodeData)


class ValidatorNode(_BaseNode):
    type: Literal["validator"] = "validator"
    data: ValidatorNodeData = Field(default_factory=ValidatorNodeData)


class IntegrationNode(_BaseNode):
    type: Literal["integration"] = "integration"
    data: IntegrationNodeData = Field(default_factory=IntegrationNodeData)


WorkflowNode = Annotated[
    Union[PromptNode, RouterNode, ValidatorNode, IntegrationNode],
    Field(discriminator="type"),
]


class WorkflowEdge(BaseModel):
    """Directed edge; `sourceHandle` selects the output port of the source."""

    model_config = ConfigDict(frozen=True)

    id: str
    source: str
    target: str
    sourceHandle: Optional[str] = None
    targetHandle: Optional[str] = None

    @field_validator("sourceHandle", "targetHandle", mode="before")
    @classmethod
    def handle_to_str(cls, v: Any) -> Optional[str]:
        # Designer may persist numeric handles for router branches.
        if v is None:
            return None
        return str(v)


class WorkflowConfig(BaseModel):
    """Complete node/edge snapshot. Always replaced wholesale on save."""

    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_graph_consistency(self) -> "WorkflowConfig":
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"duplicate node id {node.id!r}")
            seen.add(node.id)
        for edge in self.edges:
            missing = [end for end in (edge.source, edge.target) if end not in seen]
            if missing:
                raise ValueError(
                    f"edge {edge.id!r} references unknown node id(s) {', '.join(missing)}"
                )
        return self


class Workflow(BaseModel):
    """A stored prompt chain as handed to the compiler."""

    id: str
    name: str
    description: Optional[str] = None
    org_id: Optional[str] = None
    config: WorkflowConfig = Field(default_factory=WorkflowConfig)


def parse_workflow(raw: Mapping[str, Any]) -> Workflow:
    """Validate a stored prompt-chain row (or designer payload) into a `Workflow`.

    Node type tags are checked against the closed set before model validation
    so an unknown tag surfaces as `UnsupportedNodeType` rather than a generic
    validation error. `config` may arrive as a JSON string from some drivers.

    Raises:
        UnsupportedNodeType: a node carries a type outside `NODE_TYPES`.
        pydantic.ValidationError: any other structural problem.
    """
    data: Dict[str, Any] = dict(raw)
    config = data.get("config")
    if isinstance(config, str):
        config = json.loads(config) if config.strip() else {}
        data["config"] = config
    if "org_id" not in data and "orgId" in data:
        data["org_id"] = data["orgId"]
    if isinstance(config, Mapping):
        for node in config.get("nodes") or []:
            node_type = node.get("type") if isinstance(node, Mapping) else None
            if node_type not in NODE_TYPES:
                node_id = node.get("id") if isinstance(node, Mapping) else None
                raise UnsupportedNodeType(node_type, node_id)
    return Workflow.model_validate(data)
