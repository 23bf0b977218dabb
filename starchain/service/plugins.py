"""Node and credential plugin discovery and versioned dispatch."""

from __future__ import annotations

import importlib.util
import inspect
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable

from starchain.logging import get_logger
from starchain.service.errors import PluginNotFoundError
from starchain.storage.models import InputParam, NodeData

DEFAULT_NODE_VERSION = 1
SKIP_CATEGORIES = frozenset({"Analytic"})

logger = get_logger(__name__)


@runtime_checkable
class NodeImplementation(Protocol):
    """What a node plugin must provide.

    ``init`` builds the node's instance from its resolved data; ``run`` is
    only needed on nodes that can end a flow. Either may be a coroutine.
    """

    name: str
    version: int
    label: str
    category: str
    inputs: List[InputParam]

    def init(self, node_data: NodeData, question: str, context: "NodeContext") -> Any: ...


class CredentialDefinition(Protocol):
    name: str
    label: str
    inputs: List[InputParam]


@dataclass
class NodeContext:
    """Shared collaborators handed to every node ``init`` call."""

    app_data_source: Any = None
    database_entities: Mapping[str, Any] = field(default_factory=dict)
    cache_pool: Any = None
    vault: Any = None


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _version_key(version: Any) -> str:
    if not version:
        version = DEFAULT_NODE_VERSION
    # 2 and 2.0 name the same version
    if isinstance(version, float) and version.is_integer():
        version = int(version)
    return str(version)


class PluginRegistry:
    """Maps ``(name, version)`` to a node implementation.

    Populated once at startup and read-only afterwards, so lookups from
    concurrent builds need no locking.
    """

    def __init__(self) -> None:
        # latest version of each node
        self.component_nodes: Dict[str, Any] = {}
        # every registered version, keyed by name then str(version)
        self.component_version_nodes: Dict[str, Dict[str, Any]] = {}
        self.component_credentials: Dict[str, Any] = {}

    def register_node(self, node: Any, *, file_path: Optional[str] = None) -> bool:
        if not getattr(node, "version", None):
            node.version = DEFAULT_NODE_VERSION
        if file_path:
            node.file_path = file_path
        if getattr(node, "category", "") in SKIP_CATEGORIES:
            return False

        name = node.name
        latest = self.component_nodes.get(name)
        if latest is None or node.version > latest.version:
            self.component_nodes[name] = node
        self.component_version_nodes.setdefault(name, {})[_version_key(node.version)] = node
        return True

    def register_credential(self, credential: Any) -> None:
        self.component_credentials[credential.name] = credential

    def discover(self, directory: str | Path) -> int:
        """Load every module under ``directory`` and register what it exports.

        Modules expose ``node_class`` and/or ``credential_class``. A module
        that fails to import is logged and skipped.
        """
        root = Path(directory)
        if not root.is_dir():
            logger.warning("plugin_directory_missing", path=str(root))
            return 0

        count = 0
        for path in sorted(root.rglob("*.py")):
            if path.name.startswith("_"):
                continue
            module_name = "starchain_plugin_" + "_".join(path.relative_to(root).with_suffix("").parts)
            spec = importlib.util.spec_from_file_location(module_name, path)
            if spec is None or spec.loader is None:
                continue
            module = importlib.util.module_from_spec(spec)
            try:
                spec.loader.exec_module(module)
            except Exception as exc:
                logger.warning("plugin_load_failed", path=str(path), error=str(exc))
                continue

            node_class = getattr(module, "node_class", None)
            if node_class is not None and self.register_node(node_class(), file_path=str(path)):
                count += 1
            credential_class = getattr(module, "credential_class", None)
            if credential_class is not None:
                self.register_credential(credential_class())
                count += 1

        logger.info(
            "plugins_discovered",
            path=str(root),
            count=count,
            nodes=len(self.component_nodes),
            credentials=len(self.component_credentials),
        )
        return count

    def resolve(self, name: str, version: Any = None) -> Any:
        versions = self.component_version_nodes.get(name)
        if not versions:
            raise PluginNotFoundError(
                f"Node {name} not found", detail={"name": name, "version": version}
            )
        node = versions.get(_version_key(version))
        if node is None:
            raise PluginNotFoundError(
                f"Node {name} version {_version_key(version)} not found",
                detail={"name": name, "version": version, "available": sorted(versions)},
            )
        return node

    def get_credential(self, name: str) -> Any:
        credential = self.component_credentials.get(name)
        if credential is None:
            raise PluginNotFoundError(f"Credential {name} not found", detail={"name": name})
        return credential

    async def instantiate(
        self, node: Any, node_data: NodeData, question: str, context: NodeContext
    ) -> Any:
        return await _maybe_await(node.init(node_data, question, context))

    async def run(
        self, node: Any, node_data: NodeData, question: str, options: Dict[str, Any]
    ) -> Any:
        run = getattr(node, "run", None)
        if run is None:
            raise PluginNotFoundError(
                f"Node {node.name} cannot end a flow", detail={"name": node.name}
            )
        return await _maybe_await(run(node_data, question, options))
