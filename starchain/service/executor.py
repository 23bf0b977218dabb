from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence, Tuple

from starchain.config import DEFAULT_MAX_LOOP
from starchain.logging import get_logger, log_build_trace
from starchain.service.errors import PluginInstantiationError
from starchain.service.graph import DepthQueue, NodeGraph
from starchain.service.plugins import NodeContext, PluginRegistry
from starchain.service.variables import replace_inputs_with_config, resolve_variables
from starchain.storage.models import FlowNode, clone_node_data, clone_nodes


@dataclass
class ExploredNode:
    remaining_loop: int
    last_seen_depth: int


class FlowExecutor:
    """Instantiates a flow's nodes breadth-first from its starting nodes.

    Nodes are visited level by level using the depth queue produced by
    ``get_starting_nodes``. A node reached again at a different depth is
    re-run, at most ``max_loop`` times, which lets feedback loops make
    bounded progress.
    """

    def __init__(self, registry: PluginRegistry, *, max_loop: int = DEFAULT_MAX_LOOP) -> None:
        self.registry = registry
        self.max_loop = max_loop
        self.logger = get_logger(__name__)

    async def build(
        self,
        starting_node_ids: Sequence[str],
        nodes: Sequence[FlowNode],
        graph: NodeGraph,
        depth_queue: DepthQueue,
        question: str,
        *,
        override_config: Optional[Mapping[str, Any]] = None,
        context: Optional[NodeContext] = None,
        flow_id: Optional[str] = None,
    ) -> List[FlowNode]:
        """Return a copy of ``nodes`` with every reachable node's instance set.

        Raises:
            PluginInstantiationError: a node failed to resolve or initialize;
                nothing built so far is returned.
        """
        flow_nodes = clone_nodes(list(nodes))
        node_index = {node.id: idx for idx, node in enumerate(flow_nodes)}
        context = context or NodeContext()

        node_queue: Deque[Tuple[str, int]] = deque()
        explored: Dict[str, ExploredNode] = {}
        for node_id in starting_node_ids:
            node_queue.append((node_id, 0))
            explored[node_id] = ExploredNode(remaining_loop=self.max_loop, last_seen_depth=0)

        trace: List[Dict[str, Any]] = []
        build_start = time.monotonic()

        while node_queue:
            node_id, depth = node_queue.popleft()
            idx = node_index.get(node_id)
            if idx is None:
                continue
            flow_node = flow_nodes[idx]

            node_start = time.monotonic()
            try:
                implementation = self.registry.resolve(flow_node.data.name, flow_node.data.version)
                flow_node_data = clone_node_data(flow_node.data)
                if override_config:
                    flow_node_data = replace_inputs_with_config(flow_node_data, override_config)
                resolved_data = resolve_variables(flow_node_data, flow_nodes, question)
                flow_node.data.instance = await self.registry.instantiate(
                    implementation, resolved_data, question, context
                )
            except Exception as exc:
                self.logger.error(
                    "node_instantiation_failed",
                    flow_id=flow_id,
                    node_id=node_id,
                    node_name=flow_node.data.name,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                raise PluginInstantiationError(
                    str(exc),
                    detail={"node_id": node_id, "node_name": flow_node.data.name},
                ) from exc

            duration_ms = int((time.monotonic() - node_start) * 1000)
            trace.append({"node_id": node_id, "depth": depth, "duration_ms": duration_ms})
            self.logger.debug(
                "node_instantiated",
                flow_id=flow_id,
                node_id=node_id,
                depth=depth,
                duration_ms=duration_ms,
            )

            next_depth = depth + 1
            neighbour_node_ids = list(graph.get(node_id, []))
            # Pull in same-level nodes that no edge from here reaches
            for other_id, other_depth in depth_queue.items():
                if other_depth == next_depth and other_id not in neighbour_node_ids:
                    neighbour_node_ids.append(other_id)

            for neighbour_id in neighbour_node_ids:
                seen = explored.get(neighbour_id)
                if seen is None:
                    explored[neighbour_id] = ExploredNode(
                        remaining_loop=self.max_loop, last_seen_depth=next_depth
                    )
                    node_queue.append((neighbour_id, next_depth))
                    continue

                if seen.last_seen_depth == next_depth:
                    continue
                if seen.remaining_loop == 0:
                    break
                explored[neighbour_id] = ExploredNode(
                    remaining_loop=seen.remaining_loop - 1, last_seen_depth=next_depth
                )
                node_queue.append((neighbour_id, next_depth))

        log_build_trace(flow_id, trace, self.logger)
        self.logger.info(
            "flow_built",
            flow_id=flow_id,
            nodes_instantiated=len(trace),
            duration_ms=int((time.monotonic() - build_start) * 1000),
        )
        return flow_nodes
