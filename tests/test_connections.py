from n8n_prompt_chains.models.graph import WorkflowEdge
from n8n_prompt_chains.translation.connections import (
    TRIGGER_NODE_ID,
    compile_connections,
    output_index,
)

from conftest import make_chain, prompt_node


def _targets(port):
    return [c.node for c in port]


def test_output_index_parsing():
    assert output_index(None) == 0
    assert output_index("") == 0
    assert output_index("2") == 2
    assert output_index("1-out") == 1
    assert output_index("a") == 0


def test_trigger_feeds_first_node_regardless_of_edges():
    chain = make_chain(
        [prompt_node("a"), prompt_node("b")],
        [{"id": "e1", "source": "b", "target": "a"}],
    )
    connections = compile_connections(chain.config.edges, chain.config.nodes)
    assert _targets(connections[TRIGGER_NODE_ID].main[0]) == ["a"]
    assert _targets(connections["b"].main[0]) == ["a"]


def test_sparse_ports_are_dense_and_parallel_order_kept():
    chain = make_chain(
        [
            {"id": "r", "type": "router", "data": {"conditions": ["x", "y", "z"]}},
            prompt_node("a"),
            prompt_node("b"),
            prompt_node("c"),
        ],
        [
            {"id": "e1", "source": "r", "target": "c", "sourceHandle": "2"},
            {"id": "e2", "source": "r", "target": "a", "sourceHandle": 2},
            {"id": "e3", "source": "r", "target": "b", "sourceHandle": "0"},
        ],
    )
    ports = compile_connections(chain.config.edges, chain.config.nodes)["r"].main
    assert len(ports) == 3
    assert _targets(ports[0]) == ["b"]
    assert ports[1] == []
    assert _targets(ports[2]) == ["c", "a"]


def test_empty_graph_has_no_connections():
    assert compile_connections([], []) == {}


def test_connection_entries_use_main_type():
    edges = [WorkflowEdge(id="e", source="a", target="b")]
    connections = compile_connections(edges, [])
    entry = connections["a"].main[0][0]
    assert (entry.node, entry.type, entry.index) == ("b", "main", 0)
