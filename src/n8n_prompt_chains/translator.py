"""Public facade for prompt chain -> n8n workflow translation.

This module provides the stable public API for converting an authored prompt
chain snapshot into an n8n workflow definition. Per-node and per-edge logic is
delegated to the `n8n_prompt_chains.translation` package.

Output contract:
    - nodes[0] is the synthetic `Manual Trigger` (id `trigger`), followed by one
      n8n node per authored node in authoring order
    - connections always contain `trigger -> first authored node`
    - `name` equals the prompt chain name (used for remote lookup on cold cache)
    - `active` is False; the deployment step activates explicitly
    - n8n node names are unique: label, else id; repeated labels get the node
      id appended

Public Functions:
    translate_workflow: Convert a `Workflow` into an `N8nWorkflow`
    WorkflowTranslator: Same, with an injectable rule transpiler
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .errors import InvalidWorkflow
from .models.graph import Workflow
from .models.n8n import N8nNode, N8nWorkflow
from .translation.connections import TRIGGER_NODE_ID, compile_connections
from .translation.nodes import NodeCompiler
from .translation.rules import RuleTranspiler

logger = logging.getLogger(__name__)

__all__ = [
    "TRIGGER_NODE_ID",
    "TRIGGER_NODE_NAME",
    "WorkflowTranslator",
    "translate_workflow",
]

TRIGGER_NODE_NAME = "Manual Trigger"
TRIGGER_NODE_TYPE = "n8n-nodes-base.manualTrigger"


def _trigger_node() -> N8nNode:
    return N8nNode(
        id=TRIGGER_NODE_ID,
        name=TRIGGER_NODE_NAME,
        type=TRIGGER_NODE_TYPE,
        typeVersion=1,
        position=(100, 100),
        parameters={},
    )


class WorkflowTranslator:
    def __init__(self, org_id: Optional[str] = None, transpiler: Optional[RuleTranspiler] = None):
        self.org_id = org_id
        self._node_compiler = NodeCompiler(transpiler=transpiler, org_id=org_id)

    def _node_names(self, workflow: Workflow) -> Dict[str, str]:
        used = {TRIGGER_NODE_NAME}
        names: Dict[str, str] = {}
        for node in workflow.config.nodes:
            base = node.data.label or node.id
            name = base if base not in used else f"{base} ({node.id})"
            used.add(name)
            names[node.id] = name
        return names

    def translate(self, workflow: Workflow) -> N8nWorkflow:
        """Translate a complete workflow snapshot.

        Raises:
            UnsupportedNodeType: a node outside the closed type set.
            InvalidWorkflow: an authored node reuses the reserved trigger id.
        """
        logger.info("Translating workflow to n8n format: %s", workflow.name)
        config = workflow.config
        if any(node.id == TRIGGER_NODE_ID for node in config.nodes):
            raise InvalidWorkflow(f"node id {TRIGGER_NODE_ID!r} is reserved for the entry trigger")

        names = self._node_names(workflow)
        nodes: List[N8nNode] = [_trigger_node()]
        for node in config.nodes:
            nodes.append(self._node_compiler.compile(node, names[node.id]))

        connections = compile_connections(config.edges, config.nodes)
        logger.debug(
            "Translated workflow %s: nodes=%d connection_sources=%d",
            workflow.id,
            len(nodes),
            len(connections),
        )
        return N8nWorkflow(
            name=workflow.name,
            nodes=nodes,
            connections=connections,
            active=False,
            settings={"executionOrder": "v1"},
        )


def translate_workflow(
    workflow: Workflow,
    org_id: Optional[str] = None,
    *,
    transpiler: Optional[RuleTranspiler] = None,
) -> N8nWorkflow:
    """Convert a prompt chain snapshot into an n8n workflow definition.

    Args:
        workflow: complete, consistent graph snapshot.
        org_id: owning organization; selects org-scoped credential names.
            Defaults to `workflow.org_id`.
        transpiler: optional replacement for the default rule transpiler.

    Returns:
        `N8nWorkflow` ready for create/update (no `id`).
    """
    effective_org = org_id if org_id is not None else workflow.org_id
    return WorkflowTranslator(org_id=effective_org, transpiler=transpiler).translate(workflow)
