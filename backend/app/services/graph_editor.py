"""
Canvas edit operations on raw node/edge lists.

These work on the JSON dicts the editor sends so saved graphs keep every
field the client wrote. Each function returns new lists; inputs are not
mutated.
"""

from __future__ import annotations

import time
from typing import Any, Optional

from app.config import Settings
from app.errors import NotFound, ValidationError

NEW_NODE_SPACING = 400
FIRST_NODE_X = 100
DEFAULT_ROW_Y = 200
DEFAULT_PROMPT = "Enter your prompt here..."


def _x(node: dict[str, Any]) -> float:
    position = node.get("position") or {}
    try:
        return float(position.get("x", 0))
    except (TypeError, ValueError):
        return 0.0


def default_nodes(workflow_id: str) -> list[dict[str, Any]]:
    """A new workflow starts with a single input node."""
    return [
        {
            "id": "input-1",
            "type": "input",
            "position": {"x": FIRST_NODE_X, "y": DEFAULT_ROW_Y},
            "data": {"textInput": "", "workflowId": workflow_id},
        }
    ]


def add_ai_node(nodes: list[dict[str, Any]], *, node_id: Optional[str] = None) -> list[dict[str, Any]]:
    """Append an ai node to the right of the rightmost node."""
    x = max((_x(n) for n in nodes), default=None)
    new_node = {
        "id": node_id or f"ai-{int(time.time() * 1000)}",
        "type": "ai",
        "position": {"x": FIRST_NODE_X if x is None else x + NEW_NODE_SPACING, "y": DEFAULT_ROW_Y},
        "data": {
            "prompt": DEFAULT_PROMPT,
            "model": Settings.default_model(),
            "outputFormat": "text",
        },
    }
    return [*nodes, new_node]


def delete_node(
    nodes: list[dict[str, Any]],
    edges: list[dict[str, Any]],
    node_id: str,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """
    Remove a node and every edge touching it.

    Raises:
        NotFound: no node with ``node_id``.
        ValidationError: the node is the workflow's last input node.
    """
    target = next((n for n in nodes if n.get("id") == node_id), None)
    if target is None:
        raise NotFound(f"Node not found: {node_id}")
    if target.get("type") == "input" and sum(1 for n in nodes if n.get("type") == "input") == 1:
        raise ValidationError("A workflow needs at least one input node")

    remaining_nodes = [n for n in nodes if n.get("id") != node_id]
    remaining_edges = [e for e in edges if e.get("source") != node_id and e.get("target") != node_id]
    return remaining_nodes, remaining_edges


def update_node_data(
    nodes: list[dict[str, Any]],
    node_id: str,
    patch: dict[str, Any],
) -> list[dict[str, Any]]:
    """Shallow-merge ``patch`` into one node's data."""
    updated = []
    found = False
    for node in nodes:
        if node.get("id") == node_id:
            node = {**node, "data": {**(node.get("data") or {}), **patch}}
            found = True
        updated.append(node)
    if not found:
        raise NotFound(f"Node not found: {node_id}")
    return updated
