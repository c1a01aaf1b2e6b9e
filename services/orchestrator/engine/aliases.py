"""Context seeding and alias keys under which node results are stored.

Templates reference results in many styles ("HTTP 1.response", "GPT 3.result",
"Trigger 2.prompt1", a node's own label, its raw id), so every result is written
under several keys. Alias generation is pure: it only computes key names.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, MutableMapping, Sequence, Tuple

from shared.constants import NUMBERED_FIELD_PATTERN, TRIGGER_ALIAS_COUNT, TRIGGER_RESULT_ALIAS_COUNT
from shared.types import Node, NodeType
from shared.utils import first_int


@dataclass(frozen=True)
class NodeAliases:
    keys: Tuple[str, ...] = ()
    # Written only when absent, so the first node of a type owns them
    default_keys: Tuple[str, ...] = ()

    def __add__(self, other: "NodeAliases") -> "NodeAliases":
        return NodeAliases(self.keys + other.keys, self.default_keys + other.default_keys)


def seed_context(trigger_input: Mapping[str, Any]) -> Dict[str, Any]:
    """Initial context: trigger payload under legacy names, hoisted to root, and as Trigger 1..10"""
    payload = dict(trigger_input)
    context: Dict[str, Any] = {
        "originalTriggerData": payload,
        "trigger": payload,
        "data": payload,
        "webhookRequestBody": payload,
        **payload,
    }
    for i in range(1, TRIGGER_ALIAS_COUNT + 1):
        context[f"Trigger {i}"] = {"body": payload, **payload}
    return context


def extract_numbered_fields(source: Any) -> Dict[str, Any]:
    if not isinstance(source, Mapping):
        return {}
    return {k: v for k, v in source.items() if NUMBERED_FIELD_PATTERN.match(k)}


def type_display_name(node_type: NodeType) -> str:
    """httpTask -> HttpTask"""
    return node_type.value[:1].upper() + node_type.value[1:]


def _creation_order_key(node: Node) -> str:
    return node.created_at or node.id


def gpt_node_number(node: Node, nodes: Sequence[Node]) -> int:
    """Number a GPT node is referenced by: label, nodeNumber, id, then creation order"""
    number = first_int(node.display_label)
    if number is None and node.node_number:
        number = node.node_number
    if number is None:
        number = first_int(node.id)
    if number is None:
        gpt_nodes = sorted((n for n in nodes if n.type == NodeType.GPT_TASK), key=_creation_order_key)
        ids = [n.id for n in gpt_nodes]
        number = ids.index(node.id) + 1 if node.id in ids else 1
    return number


def _common_aliases(node: Node, index: int) -> NodeAliases:
    name = type_display_name(node.type)
    keys = (node.id, f"{name} {index}")
    if node.display_label:
        keys += (node.display_label,)
    return NodeAliases(keys, (name,))


def _http_aliases(node: Node, index: int, nodes: Sequence[Node]) -> NodeAliases:
    return NodeAliases(
        (f"HTTP {index}", f"HTTP Request {index}"),
        ("HTTP", "HTTP Request"),
    )


def _gpt_aliases(node: Node, index: int, nodes: Sequence[Node]) -> NodeAliases:
    number = gpt_node_number(node, nodes)
    keys = (f"GPT {number}", f"GPT Task {number}")
    label_match = re.search(r"GPT\s*(\d+)", node.display_label, re.IGNORECASE)
    if label_match and int(label_match.group(1)) != number:
        keys += (f"GPT {label_match.group(1)}", f"GPT Task {label_match.group(1)}")
    return NodeAliases(keys, ("GPT", "GPT Task"))


def _trigger_aliases(node: Node, index: int, nodes: Sequence[Node]) -> NodeAliases:
    numbered = tuple(f"Trigger {i}" for i in range(1, TRIGGER_RESULT_ALIAS_COUNT + 1))
    return NodeAliases(numbered + ("Trigger", "Webhook Trigger"))


_TYPE_ALIASES: Dict[NodeType, Callable[[Node, int, Sequence[Node]], NodeAliases]] = {
    NodeType.HTTP_TASK: _http_aliases,
    NodeType.GPT_TASK: _gpt_aliases,
    NodeType.TRIGGER: _trigger_aliases,
}


def batch_aliases(node: Node, index: int, nodes: Sequence[Node]) -> NodeAliases:
    """Keys for a node executed by the batch walker; index is its 1-based ordinal within its type"""
    aliases = _common_aliases(node, index)
    type_aliases = _TYPE_ALIASES.get(node.type)
    if type_aliases is not None:
        aliases = aliases + type_aliases(node, index, nodes)
    return aliases


def parallel_task_aliases(node: Node, index: int, nodes: Sequence[Node]) -> NodeAliases:
    """Keys for an HTTP/GPT task settled by the early-response walker"""
    keys: Tuple[str, ...] = (node.id,)
    if node.type == NodeType.GPT_TASK:
        number = gpt_node_number(node, nodes)
        keys += (f"GPT {number}", f"GPT Task {number}")
        default = "GPT"
    else:
        keys += (f"HTTP {index}", f"HTTP Task {index}")
        default = "HTTP"
    if node.display_label:
        keys += (node.display_label,)
    return NodeAliases(keys, (default,))


def store_result(context: MutableMapping[str, Any], aliases: NodeAliases, value: Any) -> None:
    for key in aliases.keys:
        context[key] = value
    for key in aliases.default_keys:
        if not context.get(key):
            context[key] = value
