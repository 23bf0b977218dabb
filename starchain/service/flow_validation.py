from __future__ import annotations

from typing import Any, Dict

from jsonschema import Draft202012Validator

from starchain.service.errors import InvalidFlowError

_FLOW_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "properties": {
        "nodes": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "type": {"type": "string"},
                    "data": {
                        "type": "object",
                        "properties": {
                            "name": {"type": "string", "minLength": 1},
                            "version": {"type": ["integer", "number", "null"]},
                            "inputs": {"type": "object"},
                            "inputParams": {"type": "array"},
                            "outputs": {"type": "object"},
                        },
                        "required": ["name"],
                    },
                },
                "required": ["id", "data"],
            },
        },
        "edges": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "source": {"type": "string"},
                    "target": {"type": "string"},
                },
                "required": ["source", "target"],
            },
        },
        "viewport": {"type": "object"},
    },
    "required": ["nodes", "edges"],
}

_VALIDATOR = Draft202012Validator(_FLOW_SCHEMA)


def validate_flow_data(flow_data: Dict[str, Any]) -> None:
    errors = sorted(_VALIDATOR.iter_errors(flow_data), key=lambda e: [str(p) for p in e.path])
    if errors:
        messages = [e.message for e in errors]
        raise InvalidFlowError("flow validation failed", detail={"errors": messages})
