"""Template variable resolution for node inputs.

Inputs may reference other nodes with ``{{nodeId.output}}`` or the live
question with ``{{question}}``. Two modes exist:

- inline: the whole value becomes the referenced node's instance, which
  may be any object (a chain, a retriever, a string);
- template: for params declared ``acceptVariable`` every reference is
  substituted into the surrounding text.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from starchain.storage.models import FlowNode, NodeData, clone_node_data, instance_ids

QUESTION_VAR_PREFIX = "question"

# Param types never offered as flow-wide overrides
_NON_OVERRIDABLE_TYPES = frozenset({"password", "options"})


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def get_variable_value(
    param_value: Any,
    nodes: Sequence[FlowNode],
    question: str,
    accept_variable: bool = False,
) -> Any:
    """Resolve ``{{...}}`` references in a single input value.

    Non-string values are returned untouched. References to nodes that do
    not exist are left as written.
    """
    if not isinstance(param_value, str):
        return param_value

    node_map = {n.id: n for n in nodes}
    return_val: Any = param_value
    variable_stack: List[int] = []
    variable_dict: Dict[str, Any] = {}

    idx = 0
    end_idx = len(param_value) - 1
    while idx < end_idx:
        pair = param_value[idx : idx + 2]

        if pair == "{{":
            variable_stack.append(idx + 2)
        elif pair == "}}" and variable_stack:
            variable_start = variable_stack.pop()
            variable_path = param_value[variable_start:idx]

            if accept_variable and variable_path == QUESTION_VAR_PREFIX:
                variable_dict["{{" + variable_path + "}}"] = question

            variable_node_id = variable_path.split(".", 1)[0]
            executed_node = node_map.get(variable_node_id)
            if executed_node is not None:
                if accept_variable:
                    variable_dict["{{" + variable_path + "}}"] = executed_node.data.instance
                else:
                    return_val = executed_node.data.instance
        idx += 1

    if accept_variable:
        # Sorted so a key is replaced before longer keys sharing its prefix
        for path in sorted(variable_dict):
            return_val = return_val.replace(path, _as_text(variable_dict[path]))
    return return_val


def resolve_variables(node_data: NodeData, nodes: Sequence[FlowNode], question: str) -> NodeData:
    """Return a copy of ``node_data`` with every input reference resolved."""
    flow_node_data = clone_node_data(node_data, instance_ids(nodes))
    inputs = flow_node_data.inputs

    for key in list(inputs):
        param_value = inputs[key]
        if isinstance(param_value, list):
            inputs[key] = [get_variable_value(p, nodes, question) for p in param_value]
        else:
            param = node_data.input_param(key)
            accept_variable = param.accept_variable if param else False
            inputs[key] = get_variable_value(param_value, nodes, question, accept_variable)

    return flow_node_data


def replace_inputs_with_config(
    node_data: NodeData, override_config: Optional[Mapping[str, Any]]
) -> NodeData:
    """Overwrite inputs in place with caller-supplied values of the same name.

    The override applies to every node sharing the param name; no type
    checking is done. A ``None`` override keeps the stored value.
    """
    if not override_config:
        return node_data
    for key in list(node_data.inputs):
        override = override_config.get(key)
        if override is not None:
            node_data.inputs[key] = override
    return node_data


def get_input_variables(param_value: Any) -> List[str]:
    """Return the ``{name}`` prompt variables found in a string value."""
    if not isinstance(param_value, str):
        return []
    variable_stack: List[int] = []
    input_variables: List[str] = []
    for idx, char in enumerate(param_value):
        if char == "{":
            variable_stack.append(idx + 1)
        elif char == "}" and variable_stack:
            input_variables.append(param_value[variable_stack.pop() : idx])
    return input_variables


def is_start_node_depend_on_input(starting_nodes: Iterable[FlowNode]) -> bool:
    """True when a starting node's inputs are templated on the incoming question."""
    for node in starting_nodes:
        for value in node.data.inputs.values():
            if get_input_variables(value):
                return True
    return False


def find_available_configs(nodes: Iterable[FlowNode]) -> List[Dict[str, str]]:
    """List the input params a caller may override, one entry per distinct param."""
    configs: List[Dict[str, str]] = []
    for node in nodes:
        for param in node.data.input_params:
            if param.type in _NON_OVERRIDABLE_TYPES:
                continue
            if param.type == "file":
                config = {
                    "node": node.data.label,
                    "label": param.label,
                    "name": "files",
                    "type": param.file_type or param.type,
                }
            else:
                config = {
                    "node": node.data.label,
                    "label": param.label,
                    "name": param.name,
                    "type": param.type,
                }
            if config not in configs:
                configs.append(config)
    return configs
