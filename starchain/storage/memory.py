from __future__ import annotations

import copy
import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from starchain.logging import get_logger
from starchain.storage.models import CredentialRecord


class MemoryStore:
    """In-process store for flow definitions and credential records.

    Flow data is kept as the raw ReactFlow JSON the editor exports. A
    default flow, when configured, answers for any chatflow id that has no
    flow of its own.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.flows: Dict[str, Dict[str, Any]] = {}
        self.default_flow: Optional[Dict[str, Any]] = None
        self.credentials: Dict[str, CredentialRecord] = {}
        self._data_lock = threading.RLock()

    def load_config(self, path: str | Path) -> int:
        """Load flows (and credential records) from a JSON config file.

        Accepts either ``{"chatflows": {id: flowData}}`` or a bare flow with
        top-level ``nodes``/``edges`` that becomes the default flow. Returns
        the number of flows loaded.
        """
        config = json.loads(Path(path).read_text(encoding="utf-8"))
        loaded = 0
        with self._data_lock:
            for chatflow_id, flow_data in (config.get("chatflows") or {}).items():
                self.flows[chatflow_id] = flow_data
                loaded += 1
            if "nodes" in config:
                self.default_flow = {
                    "nodes": config.get("nodes", []),
                    "edges": config.get("edges", []),
                    "viewport": config.get("viewport", {}),
                }
                loaded += 1
            for raw in config.get("credentialRecords") or []:
                record = CredentialRecord.from_dict(raw)
                self.credentials[record.id] = record
        self.logger.info(
            "flow_config_loaded",
            path=str(path),
            flows=loaded,
            credentials=len(self.credentials),
        )
        return loaded

    def save_flow(self, chatflow_id: str, flow_data: Dict[str, Any]) -> None:
        with self._data_lock:
            self.flows[chatflow_id] = copy.deepcopy(flow_data)

    def get_flow(self, chatflow_id: str) -> Optional[Dict[str, Any]]:
        with self._data_lock:
            flow = self.flows.get(chatflow_id, self.default_flow)
            return copy.deepcopy(flow) if flow is not None else None

    def delete_flow(self, chatflow_id: str) -> bool:
        with self._data_lock:
            return self.flows.pop(chatflow_id, None) is not None

    def save_credential(self, record: CredentialRecord) -> CredentialRecord:
        with self._data_lock:
            self.credentials[record.id] = record
        return record

    def get_credential(self, credential_id: str) -> Optional[CredentialRecord]:
        with self._data_lock:
            return self.credentials.get(credential_id)

    def list_credentials(self, credential_name: Optional[str] = None) -> List[CredentialRecord]:
        with self._data_lock:
            records = list(self.credentials.values())
        if credential_name:
            records = [r for r in records if r.credential_name == credential_name]
        return records

    def delete_credential(self, credential_id: str) -> bool:
        with self._data_lock:
            return self.credentials.pop(credential_id, None) is not None
