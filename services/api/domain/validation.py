"""Workflow graph validation and cycle detection."""

import json
import re
from typing import Dict, List, Set, Any
from collections import deque
from pydantic import ValidationError
from shared.constants import (
    MAX_NODES_PER_WORKFLOW,
    MAX_CONFIG_SIZE_BYTES,
    MAX_TEMPLATE_LENGTH,
)
from shared.exceptions import CycleDetectedError, GraphValidationError
from shared.schemas import validate_node_config
from shared.types import Edge, Node, NodeType, WorkflowGraph


def validate_workflow_graph(nodes: List[Dict[str, Any]], edges: List[Dict[str, Any]]) -> WorkflowGraph:
    """Checks a submitted graph and returns it parsed"""
    if not nodes:
        raise GraphValidationError("Workflow must contain at least one node")

    # Check workflow size limit
    if len(nodes) > MAX_NODES_PER_WORKFLOW:
        raise GraphValidationError(f"Workflow exceeds maximum node limit: {len(nodes)} > {MAX_NODES_PER_WORKFLOW}")

    parsed_nodes: List[Node] = []
    node_ids: Set[str] = set()
    for raw_node in nodes:
        node = parse_node(raw_node)
        if node.id in node_ids:
            raise GraphValidationError(f"Duplicate node ID: {node.id}")
        check_node_config(node)
        node_ids.add(node.id)
        parsed_nodes.append(node)

    triggers = [n for n in parsed_nodes if n.type == NodeType.TRIGGER]
    if len(triggers) != 1:
        raise GraphValidationError(f"Workflow must have exactly one trigger node, found {len(triggers)}")

    parsed_edges: List[Edge] = []
    adjacency: Dict[str, List[str]] = {nid: [] for nid in node_ids}
    for raw_edge in edges:
        try:
            edge = Edge.model_validate(raw_edge)
        except ValidationError as e:
            raise GraphValidationError(f"Invalid edge: {e}")
        for endpoint in (edge.source, edge.target):
            if endpoint not in node_ids:
                raise GraphValidationError(f"Edge references non-existent node '{endpoint}'")
        adjacency[edge.source].append(edge.target)
        parsed_edges.append(edge)

    if has_cycle(adjacency, node_ids):
        raise CycleDetectedError("Workflow graph contains a cycle")

    return WorkflowGraph(nodes=parsed_nodes, edges=parsed_edges)


def parse_node(raw_node: Any) -> Node:
    if not isinstance(raw_node, dict):
        raise GraphValidationError("Every node must be an object")
    for field in ["id", "type"]:
        if not raw_node.get(field):
            raise GraphValidationError(f"Node missing required field: {field}")

    node_type = raw_node["type"]
    if node_type not in {t.value for t in NodeType}:
        raise GraphValidationError(
            f"Node '{raw_node['id']}' has invalid type: '{node_type}'. "
            f"Allowed types: {', '.join(sorted(t.value for t in NodeType))}"
        )

    try:
        return Node.model_validate(raw_node)
    except ValidationError as e:
        raise GraphValidationError(f"Node '{raw_node['id']}' is invalid: {e}")


def has_cycle(adjacency: Dict[str, List[str]], node_ids: Set[str]) -> bool:
    in_degree = {nid: 0 for nid in node_ids}
    for children in adjacency.values():
        for child in children:
            in_degree[child] += 1

    queue = deque([nid for nid, deg in in_degree.items() if deg == 0])
    processed = 0

    while queue:
        node_id = queue.popleft()
        processed += 1
        for child in adjacency[node_id]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                queue.append(child)

    return processed != len(node_ids)


def check_node_config(node: Node) -> None:
    """Size, template and schema checks for one node's config"""
    config_str = node.config if isinstance(node.config, str) else json.dumps(node.config)
    config_size = len(config_str.encode('utf-8'))
    if config_size > MAX_CONFIG_SIZE_BYTES:
        raise GraphValidationError(
            f"Node '{node.id}' config exceeds size limit: {config_size} > {MAX_CONFIG_SIZE_BYTES} bytes"
        )

    validate_templates_in_config(node.id, node.config)

    try:
        validate_node_config(node.type, node.config)
    except ValueError as e:
        raise GraphValidationError(f"Node '{node.id}': {e}")


def validate_templates_in_config(node_id: str, config: Any) -> None:
    """Rejects oversized {{ }} placeholders anywhere in a config"""
    template_pattern = re.compile(r'\{\{.*?\}\}')

    def check_value(value: Any, path: str = "") -> None:
        if isinstance(value, str):
            for template in template_pattern.findall(value):
                if len(template) > MAX_TEMPLATE_LENGTH:
                    raise GraphValidationError(
                        f"Node '{node_id}' has template exceeding length limit at {path or 'config'}: "
                        f"{len(template)} > {MAX_TEMPLATE_LENGTH}"
                    )

        elif isinstance(value, dict):
            for k, v in value.items():
                check_value(v, f"{path}.{k}" if path else k)

        elif isinstance(value, list):
            for i, item in enumerate(value):
                check_value(item, f"{path}[{i}]")

    check_value(config)
