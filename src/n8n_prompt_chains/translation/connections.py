"""Edge translation into n8n's connection adjacency map.

Output shape (keyed by node id, outer list indexed by output port):

    {
        "trigger": {"main": [[{"node": "<first node id>", "type": "main", "index": 0}]]},
        "router-1": {"main": [
            [ {"node": "a", ...} ],     # port 0
            [],                         # port 1 (unused, still present)
            [ {"node": "b", ...}, {"node": "c", ...} ],  # port 2
        ]},
    }

Rules:
    1. The synthetic trigger always feeds the first authored node, whatever
       the explicit edges say.
    2. `sourceHandle` selects the port; its leading digits are the index,
       anything else (missing, "a", "out") means port 0.
    3. Port lists grow densely; skipped ports are empty lists, never omitted.
    4. Parallel targets on one port keep edge authoring order.
"""
from __future__ import annotations

import re
from typing import Dict, Optional, Sequence

from ..models.graph import WorkflowEdge
from ..models.n8n import N8nConnection, N8nNodeConnections

__all__ = ["TRIGGER_NODE_ID", "output_index", "compile_connections"]

TRIGGER_NODE_ID = "trigger"

_LEADING_INT = re.compile(r"^\s*(\d+)")


def output_index(source_handle: Optional[str]) -> int:
    if not source_handle:
        return 0
    match = _LEADING_INT.match(source_handle)
    return int(match.group(1)) if match else 0


def compile_connections(
    edges: Sequence[WorkflowEdge], nodes: Sequence[object]
) -> Dict[str, N8nNodeConnections]:
    """Build the adjacency map for `edges`, prefixed by the trigger entry edge.

    Args:
        edges: authored edges in authoring order.
        nodes: authored nodes in authoring order (only the first is consulted).

    Returns:
        Mapping of source node id to its output ports.
    """
    connections: Dict[str, N8nNodeConnections] = {}
    if nodes:
        first_id = getattr(nodes[0], "id")
        connections[TRIGGER_NODE_ID] = N8nNodeConnections(
            main=[[N8nConnection(node=first_id)]]
        )

    for edge in edges:
        ports = connections.setdefault(edge.source, N8nNodeConnections()).main
        index = output_index(edge.sourceHandle)
        while len(ports) <= index:
            ports.append([])
        ports[index].append(N8nConnection(node=edge.target))

    return connections
