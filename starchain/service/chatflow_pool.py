from __future__ import annotations

import json
import threading
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from starchain.logging import get_logger
from starchain.service.variables import is_start_node_depend_on_input
from starchain.storage.models import FlowNode, NodeData

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChatflowPoolEntry:
    starting_nodes: List[FlowNode]
    ending_node_data: NodeData
    in_sync: bool = True
    override_config: Optional[Dict[str, Any]] = None


class ChatflowPool:
    """Last successful build per chatflow, reused while it stays valid.

    Entries are replaced whole under the lock, so a reader sees either the
    old or the new entry. Two requests for the same flow may still both
    miss and rebuild; the later ``add`` wins.
    """

    def __init__(self) -> None:
        self.active_chatflows: Dict[str, ChatflowPoolEntry] = {}
        self._lock = threading.Lock()

    def add(
        self,
        chatflow_id: str,
        ending_node_data: NodeData,
        starting_nodes: List[FlowNode],
        override_config: Optional[Dict[str, Any]] = None,
    ) -> ChatflowPoolEntry:
        entry = ChatflowPoolEntry(
            starting_nodes=list(starting_nodes),
            ending_node_data=ending_node_data,
            in_sync=True,
            override_config=override_config,
        )
        with self._lock:
            self.active_chatflows[chatflow_id] = entry
        logger.debug(
            "chatflow_pool_add",
            chatflow_id=chatflow_id,
            starting_nodes=[n.id for n in starting_nodes],
        )
        return entry

    def get(self, chatflow_id: str) -> Optional[ChatflowPoolEntry]:
        with self._lock:
            return self.active_chatflows.get(chatflow_id)

    def try_reuse(self, chatflow_id: str) -> Optional[ChatflowPoolEntry]:
        """Return the cached entry when its starting nodes ignore the question."""
        entry = self.get(chatflow_id)
        if entry is None:
            return None
        if is_start_node_depend_on_input(entry.starting_nodes):
            return None
        return entry

    def update_in_sync(self, chatflow_id: str, in_sync: bool) -> None:
        with self._lock:
            entry = self.active_chatflows.get(chatflow_id)
            if entry is not None:
                self.active_chatflows[chatflow_id] = replace(entry, in_sync=in_sync)

    def remove(self, chatflow_id: str) -> None:
        with self._lock:
            self.active_chatflows.pop(chatflow_id, None)


def is_same_override_config(
    is_internal: bool,
    existing_override_config: Optional[Dict[str, Any]] = None,
    new_override_config: Optional[Dict[str, Any]] = None,
) -> bool:
    """Whether a cached build's override config still matches the request.

    Internal (UI) predictions never send an override, so any stored one
    makes the cache stale.
    """
    if is_internal:
        return not existing_override_config
    if (
        existing_override_config
        and new_override_config
        and json.dumps(existing_override_config, sort_keys=True, default=str)
        == json.dumps(new_override_config, sort_keys=True, default=str)
    ):
        return True
    if existing_override_config is None and new_override_config is None:
        return True
    return False
