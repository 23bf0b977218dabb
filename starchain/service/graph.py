from __future__ import annotations

from collections import deque
from typing import Deque, Dict, List, Sequence, Tuple

from starchain.storage.models import FlowEdge, FlowNode

NodeGraph = Dict[str, List[str]]
NodeDependencies = Dict[str, int]
DepthQueue = Dict[str, int]


def construct_graphs(
    nodes: Sequence[FlowNode],
    edges: Sequence[FlowEdge],
    undirected: bool = False,
) -> Tuple[NodeGraph, NodeDependencies]:
    """Build the adjacency map and the in-degree of every node.

    With ``undirected`` each edge is also recorded target -> source; the
    dependency count is always the directed in-degree.
    """
    dependencies: NodeDependencies = {}
    graph: NodeGraph = {}

    for node in nodes:
        dependencies[node.id] = 0
        graph[node.id] = []

    for edge in edges:
        graph.setdefault(edge.source, []).append(edge.target)
        if undirected:
            graph.setdefault(edge.target, []).append(edge.source)
        dependencies[edge.target] = dependencies.get(edge.target, 0) + 1

    return graph, dependencies


def get_ending_node(dependencies: NodeDependencies, graph: NodeGraph) -> str:
    """Return the unique sink with incoming edges, or "" when the flow is invalid.

    A single-node flow ends at that node. Zero or several qualifying sinks
    both yield "".
    """
    if len(dependencies) == 1:
        return next(iter(dependencies))
    sinks = [
        node_id
        for node_id, neighbours in graph.items()
        if not neighbours and dependencies.get(node_id, 0) > 0
    ]
    if len(sinks) != 1:
        return ""
    return sinks[0]


def get_starting_nodes(graph: NodeGraph, ending_node_id: str) -> Tuple[List[str], DepthQueue]:
    """Walk back from the ending node and return the farthest nodes.

    The returned depth queue is inverted so starting nodes sit at depth 0
    and the ending node at the maximum depth.
    """
    visited = set()
    queue: Deque[Tuple[str, int]] = deque([(ending_node_id, 0)])
    depth_queue: DepthQueue = {ending_node_id: 0}

    max_depth = 0
    starting_node_ids: List[str] = []

    while queue:
        current, depth = queue.popleft()
        if current in visited:
            continue
        visited.add(current)

        if depth > max_depth:
            max_depth = depth
            starting_node_ids = [current]
        elif depth == max_depth:
            starting_node_ids.append(current)

        for neighbour in graph.get(current, []):
            if neighbour not in visited:
                queue.append((neighbour, depth + 1))
                depth_queue[neighbour] = depth + 1

    inverted = {node_id: abs(depth - max_depth) for node_id, depth in depth_queue.items()}
    return starting_node_ids, inverted
