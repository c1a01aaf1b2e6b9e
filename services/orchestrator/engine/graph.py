"""Reachability, depth and parallel-group analysis over workflow edges.

Graphs are assumed acyclic; the visited sets only stop repeated exploration.
"""

from collections import defaultdict
from typing import Dict, List, Sequence, Set

from shared.types import Edge, Node, NodeType


def build_adjacency(edges: Sequence[Edge]) -> Dict[str, List[str]]:
    adjacency: Dict[str, List[str]] = defaultdict(list)
    for edge in edges:
        adjacency[edge.source].append(edge.target)
    return adjacency


def has_path(edges: Sequence[Edge], source_id: str, target_id: str) -> bool:
    """True when target is reachable from source over at least one edge"""
    adjacency = build_adjacency(edges)
    visited: Set[str] = set()
    stack = list(reversed(adjacency.get(source_id, [])))

    while stack:
        current = stack.pop()
        if current == target_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        stack.extend(reversed(adjacency.get(current, [])))

    return False


def depth_from_trigger(nodes: Sequence[Node], edges: Sequence[Edge], node_id: str) -> int:
    """Edge hops from the trigger along the first path found by DFS.

    Not the shortest path: on diamond-shaped graphs the result depends on edge
    order. Returns -1 when unreachable and 0 when the graph has no trigger.
    """
    trigger = next((n for n in nodes if n.type == NodeType.TRIGGER), None)
    if trigger is None:
        return 0

    adjacency = build_adjacency(edges)
    visited: Set[str] = set()

    def find_depth(current_id: str, depth: int) -> int:
        if current_id == node_id:
            return depth
        if current_id in visited:
            return -1
        visited.add(current_id)

        for target in adjacency.get(current_id, []):
            found = find_depth(target, depth + 1)
            if found != -1:
                return found
        return -1

    return find_depth(trigger.id, 0)


def find_parallel_groups(
    nodes: Sequence[Node],
    edges: Sequence[Edge],
    node_type: NodeType,
    gate_node_id: str,
) -> List[List[str]]:
    """Groups of node_type nodes feeding gate_node_id that can be dispatched together.

    HTTP tasks are grouped by identical depth from the trigger (a single HTTP
    task is not worth parallelising). Every other type forms one group with no
    dependency analysis between its members.
    """
    candidates = [n for n in nodes if n.type == node_type and has_path(edges, n.id, gate_node_id)]

    if node_type != NodeType.HTTP_TASK:
        return [[n.id for n in candidates]] if candidates else []

    if len(candidates) <= 1:
        return []

    groups: Dict[int, List[str]] = {}
    for node in candidates:
        depth = depth_from_trigger(nodes, edges, node.id)
        groups.setdefault(depth, []).append(node.id)
    return list(groups.values())


def find_parallel_http_groups(nodes: Sequence[Node], edges: Sequence[Edge], gate_node_id: str) -> List[List[str]]:
    return find_parallel_groups(nodes, edges, NodeType.HTTP_TASK, gate_node_id)


def find_parallel_gpt_groups(nodes: Sequence[Node], edges: Sequence[Edge], gate_node_id: str) -> List[List[str]]:
    return find_parallel_groups(nodes, edges, NodeType.GPT_TASK, gate_node_id)
