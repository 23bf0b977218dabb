from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import AbstractSet, Any, Dict, FrozenSet, Iterable, List, Optional


def clone_plain(value: Any, keep: AbstractSet[int] = frozenset()) -> Any:
    """Copy plain containers; carry every other object by reference.

    Node instances are opaque and frequently not copyable (open clients,
    vector stores), so only dicts and lists are rebuilt. Objects whose id()
    is in ``keep`` are shared even when they are dicts or lists.
    """
    if id(value) in keep:
        return value
    if isinstance(value, dict):
        return {k: clone_plain(v, keep) for k, v in value.items()}
    if isinstance(value, list):
        return [clone_plain(v, keep) for v in value]
    return value


def instance_ids(nodes: Iterable["FlowNode"]) -> FrozenSet[int]:
    return frozenset(id(n.data.instance) for n in nodes if n.data.instance is not None)


@dataclass
class InputParam:
    name: str
    label: str = ""
    type: str = "string"
    accept_variable: bool = False
    optional: bool = False
    file_type: Optional[str] = None
    default: Any = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "InputParam":
        return cls(
            name=raw.get("name", ""),
            label=raw.get("label", ""),
            type=raw.get("type", "string"),
            accept_variable=bool(raw.get("acceptVariable", False)),
            optional=bool(raw.get("optional", False)),
            file_type=raw.get("fileType"),
            default=raw.get("default"),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "label": self.label,
            "type": self.type,
            "acceptVariable": self.accept_variable,
            "optional": self.optional,
        }
        if self.file_type is not None:
            out["fileType"] = self.file_type
        if self.default is not None:
            out["default"] = self.default
        return out


@dataclass
class NodeData:
    id: str
    name: str
    label: str = ""
    version: Optional[int] = None
    type: str = ""
    category: str = ""
    inputs: Dict[str, Any] = field(default_factory=dict)
    input_params: List[InputParam] = field(default_factory=list)
    input_anchors: List[Dict[str, Any]] = field(default_factory=list)
    output_anchors: List[Dict[str, Any]] = field(default_factory=list)
    outputs: Dict[str, Any] = field(default_factory=dict)
    credential: Optional[str] = None
    instance: Any = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "NodeData":
        return cls(
            id=raw.get("id", ""),
            name=raw.get("name", ""),
            label=raw.get("label", ""),
            version=raw.get("version"),
            type=raw.get("type", ""),
            category=raw.get("category", ""),
            inputs=dict(raw.get("inputs") or {}),
            input_params=[InputParam.from_dict(p) for p in raw.get("inputParams") or []],
            input_anchors=list(raw.get("inputAnchors") or []),
            output_anchors=list(raw.get("outputAnchors") or []),
            outputs=dict(raw.get("outputs") or {}),
            credential=raw.get("credential"),
            instance=raw.get("instance"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "label": self.label,
            "version": self.version,
            "type": self.type,
            "category": self.category,
            "inputs": self.inputs,
            "inputParams": [p.to_dict() for p in self.input_params],
            "inputAnchors": self.input_anchors,
            "outputAnchors": self.output_anchors,
            "outputs": self.outputs,
            "credential": self.credential,
        }

    def input_param(self, name: str) -> Optional[InputParam]:
        for param in self.input_params:
            if param.name == name:
                return param
        return None


def clone_node_data(data: NodeData, keep: AbstractSet[int] = frozenset()) -> NodeData:
    """Copy node data, keeping ``instance`` and live input values by reference."""
    keep = keep | ({id(data.instance)} if data.instance is not None else set())
    changes = {
        f.name: clone_plain(getattr(data, f.name), keep)
        for f in fields(data)
        if f.name not in {"instance", "input_params"}
    }
    changes["input_params"] = [replace(p) for p in data.input_params]
    return replace(data, **changes)


@dataclass
class FlowNode:
    id: str
    data: NodeData
    type: str = "customNode"
    position: Dict[str, float] = field(default_factory=lambda: {"x": 0.0, "y": 0.0})

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "FlowNode":
        data = NodeData.from_dict(raw.get("data") or {})
        if not data.id:
            data.id = raw.get("id", "")
        return cls(
            id=raw.get("id", data.id),
            data=data,
            type=raw.get("type", "customNode"),
            position=dict(raw.get("position") or {"x": 0.0, "y": 0.0}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "position": self.position,
            "data": self.data.to_dict(),
        }


def clone_nodes(nodes: List[FlowNode]) -> List[FlowNode]:
    keep = instance_ids(nodes)
    return [
        replace(n, data=clone_node_data(n.data, keep), position=dict(n.position))
        for n in nodes
    ]


@dataclass
class FlowEdge:
    source: str
    target: str
    source_handle: str = ""
    target_handle: str = ""
    id: str = ""
    type: str = "buttonedge"

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "FlowEdge":
        return cls(
            source=raw["source"],
            target=raw["target"],
            source_handle=raw.get("sourceHandle", ""),
            target_handle=raw.get("targetHandle", ""),
            id=raw.get("id") or f"{raw['source']}-{raw['target']}",
            type=raw.get("type", "buttonedge"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "sourceHandle": self.source_handle,
            "target": self.target,
            "targetHandle": self.target_handle,
            "type": self.type,
            "id": self.id,
        }


@dataclass
class FlowDefinition:
    nodes: List[FlowNode] = field(default_factory=list)
    edges: List[FlowEdge] = field(default_factory=list)
    viewport: Dict[str, float] = field(
        default_factory=lambda: {"x": 0.0, "y": 0.0, "zoom": 1.0}
    )

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "FlowDefinition":
        return cls(
            nodes=[FlowNode.from_dict(n) for n in raw.get("nodes") or []],
            edges=[FlowEdge.from_dict(e) for e in raw.get("edges") or []],
            viewport=dict(raw.get("viewport") or {"x": 0.0, "y": 0.0, "zoom": 1.0}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "viewport": self.viewport,
        }


@dataclass
class CredentialRecord:
    name: str
    credential_name: str
    encrypted_data: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "CredentialRecord":
        record = cls(
            name=raw.get("name", ""),
            credential_name=raw.get("credentialName", ""),
            encrypted_data=raw.get("encryptedData", ""),
        )
        if raw.get("id"):
            record.id = raw["id"]
        return record


@dataclass
class APIKeyRecord:
    key_name: str
    api_key: str
    api_secret: str
    created_at: str
    id: str

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "APIKeyRecord":
        return cls(
            key_name=raw["keyName"],
            api_key=raw["apiKey"],
            api_secret=raw["apiSecret"],
            created_at=raw.get("createdAt", ""),
            id=raw["id"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keyName": self.key_name,
            "apiKey": self.api_key,
            "apiSecret": self.api_secret,
            "createdAt": self.created_at,
            "id": self.id,
        }


@dataclass
class IncomingInput:
    question: str
    history: List[Dict[str, Any]] = field(default_factory=list)
    override_config: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "IncomingInput":
        return cls(
            question=raw.get("question", ""),
            history=list(raw.get("history") or []),
            override_config=raw.get("overrideConfig"),
        )
