from __future__ import annotations

from types import MappingProxyType
from typing import Any, Optional

from starchain.config import Settings
from starchain.logging import get_logger, set_correlation_id
from starchain.service.cache_pool import CachePool
from starchain.service.chatflow_pool import ChatflowPool, is_same_override_config
from starchain.service.errors import (
    InvalidFlowError,
    NotFoundError,
    PredictionError,
    ServiceError,
)
from starchain.service.executor import FlowExecutor
from starchain.service.flow_validation import validate_flow_data
from starchain.service.graph import construct_graphs, get_ending_node, get_starting_nodes
from starchain.service.plugins import NodeContext, PluginRegistry
from starchain.service.variables import resolve_variables
from starchain.service.vault import CredentialVault
from starchain.storage.memory import MemoryStore
from starchain.storage.models import CredentialRecord, FlowDefinition, IncomingInput, NodeData

# Entity names plugins may look up on the data source
DATABASE_ENTITIES = MappingProxyType({"Credential": CredentialRecord})

INVALID_ENDING_NODE = "Ending node must be either a Chain or Agent"


class FlowEngine:
    """Turns a chatflow id and a question into the ending node's prediction."""

    def __init__(
        self,
        store: MemoryStore,
        registry: PluginRegistry,
        chatflow_pool: ChatflowPool,
        cache_pool: CachePool,
        *,
        vault: Optional[CredentialVault] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.chatflow_pool = chatflow_pool
        self.cache_pool = cache_pool
        self.vault = vault
        self.settings = settings or Settings()
        self.executor = FlowExecutor(registry, max_loop=self.settings.max_loop)
        self.logger = get_logger(__name__)

    def _node_context(self) -> NodeContext:
        return NodeContext(
            app_data_source=self.store,
            database_entities=DATABASE_ENTITIES,
            cache_pool=self.cache_pool,
            vault=self.vault,
        )

    def _reusable_ending_data(
        self, chatflow_id: str, incoming: IncomingInput, is_internal: bool
    ) -> Optional[NodeData]:
        entry = self.chatflow_pool.try_reuse(chatflow_id)
        if entry is None:
            return None
        if self.settings.reuse_requires_same_override and not is_same_override_config(
            is_internal, entry.override_config, incoming.override_config
        ):
            return None
        return entry.ending_node_data

    async def prepare(
        self, chatflow_id: str, incoming: IncomingInput, *, is_internal: bool = False
    ) -> NodeData:
        """Build the flow (or reuse the last build) and return the ending node data.

        Raises:
            NotFoundError: no flow stored for ``chatflow_id``.
            InvalidFlowError: the flow has no unique ending node or its
                ending node outputs something other than itself.
            PluginInstantiationError: a node failed during the build.
        """
        cached = self._reusable_ending_data(chatflow_id, incoming, is_internal)
        if cached is not None:
            self.logger.info("chatflow_reused", chatflow_id=chatflow_id)
            return cached

        flow_data = self.store.get_flow(chatflow_id)
        if flow_data is None:
            raise NotFoundError(
                f"Chatflow {chatflow_id} not found", detail={"chatflow_id": chatflow_id}
            )
        validate_flow_data(flow_data)
        flow = FlowDefinition.from_dict(flow_data)
        nodes, edges = flow.nodes, flow.edges

        graph, dependencies = construct_graphs(nodes, edges)
        ending_node_id = get_ending_node(dependencies, graph)
        if not ending_node_id:
            raise InvalidFlowError(INVALID_ENDING_NODE, detail={"chatflow_id": chatflow_id})

        ending_node = next((n for n in nodes if n.id == ending_node_id), None)
        if ending_node is None:
            raise InvalidFlowError(INVALID_ENDING_NODE, detail={"chatflow_id": chatflow_id})
        ending_data = ending_node.data
        if ending_data.outputs and ending_data.name not in ending_data.outputs.values():
            raise InvalidFlowError(
                f"Output of {ending_data.label} ({ending_data.id}) must be "
                f"{ending_data.label}, can't be an Output Prediction",
                detail={"chatflow_id": chatflow_id, "node_id": ending_data.id},
            )

        undirected_graph, _ = construct_graphs(nodes, edges, undirected=True)
        starting_node_ids, depth_queue = get_starting_nodes(undirected_graph, ending_node_id)
        self.logger.info(
            "flow_build_started",
            chatflow_id=chatflow_id,
            ending_node=ending_node_id,
            starting_nodes=starting_node_ids,
        )

        built_nodes = await self.executor.build(
            starting_node_ids,
            nodes,
            graph,
            depth_queue,
            incoming.question,
            override_config=incoming.override_config,
            context=self._node_context(),
            flow_id=chatflow_id,
        )

        node_to_execute = next(n for n in built_nodes if n.id == ending_node_id)
        ending_node_data = resolve_variables(node_to_execute.data, built_nodes, incoming.question)

        starting_nodes = [n for n in nodes if n.id in starting_node_ids]
        self.chatflow_pool.add(
            chatflow_id, ending_node_data, starting_nodes, incoming.override_config
        )
        return ending_node_data

    async def predict(
        self, chatflow_id: str, incoming: IncomingInput, *, is_internal: bool = False
    ) -> Any:
        """Run the ending node of ``chatflow_id`` against ``incoming.question``."""
        set_correlation_id()
        self.logger.info("prediction_started", chatflow_id=chatflow_id, internal=is_internal)

        ending_node_data = await self.prepare(chatflow_id, incoming, is_internal=is_internal)
        implementation = self.registry.resolve(ending_node_data.name, ending_node_data.version)
        options = {"chat_history": incoming.history, "logger": self.logger}
        try:
            result = await self.registry.run(
                implementation, ending_node_data, incoming.question, options
            )
        except ServiceError:
            raise
        except Exception as exc:
            self.logger.error(
                "prediction_failed",
                chatflow_id=chatflow_id,
                node_id=ending_node_data.id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise PredictionError(
                str(exc), detail={"chatflow_id": chatflow_id, "node_id": ending_node_data.id}
            ) from exc

        self.logger.info("prediction_completed", chatflow_id=chatflow_id)
        return result
