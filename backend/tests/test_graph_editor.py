"""
Tests for canvas edit operations.
"""

import pytest

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from conftest import ai_node, edge, input_node
from app.errors import NotFound, ValidationError
from app.models.workflow import validate_graph
from app.services.graph_editor import (
    DEFAULT_PROMPT,
    add_ai_node,
    default_nodes,
    delete_node,
    update_node_data,
)


class TestDefaultNodes:
    def test_single_input_node(self):
        nodes = default_nodes("wf-1")
        assert nodes == [{
            "id": "input-1",
            "type": "input",
            "position": {"x": 100, "y": 200},
            "data": {"textInput": "", "workflowId": "wf-1"},
        }]


class TestAddAINode:
    def test_placed_right_of_rightmost(self):
        nodes = [input_node(x=100), ai_node("ai-a", 500)]

        updated = add_ai_node(nodes, node_id="ai-new")

        new = updated[-1]
        assert new["id"] == "ai-new"
        assert new["type"] == "ai"
        assert new["position"] == {"x": 900, "y": 200}
        assert new["data"] == {"prompt": DEFAULT_PROMPT, "model": "gpt-4o-mini", "outputFormat": "text"}
        assert len(nodes) == 2

    def test_empty_canvas(self):
        updated = add_ai_node([])
        assert updated[0]["position"] == {"x": 100, "y": 200}
        assert updated[0]["id"].startswith("ai-")

    def test_default_model_from_settings(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_MODEL", "gpt-4.1-mini")
        updated = add_ai_node([input_node()])
        assert updated[-1]["data"]["model"] == "gpt-4.1-mini"


class TestDeleteNode:
    def test_removes_touching_edges(self):
        nodes = [input_node(), ai_node("A", 300), ai_node("B", 600)]
        edges = [edge("input-1", "A"), edge("A", "B"), edge("input-1", "B")]

        new_nodes, new_edges = delete_node(nodes, edges, "A")

        assert [n["id"] for n in new_nodes] == ["input-1", "B"]
        assert new_edges == [edge("input-1", "B")]
        validate_graph(new_nodes, new_edges)

    def test_last_input_node_protected(self):
        with pytest.raises(ValidationError):
            delete_node([input_node(), ai_node("A", 300)], [], "input-1")

    def test_extra_input_node_removable(self):
        nodes = [input_node(), input_node(node_id="input-2", x=50)]
        new_nodes, _ = delete_node(nodes, [], "input-2")
        assert [n["id"] for n in new_nodes] == ["input-1"]

    def test_missing_node(self):
        with pytest.raises(NotFound):
            delete_node([input_node()], [], "ghost")


class TestUpdateNodeData:
    def test_shallow_merge(self):
        nodes = [input_node(), ai_node("A", 300, "old prompt")]

        updated = update_node_data(nodes, "A", {"prompt": "new prompt", "outputFormat": "json"})

        assert updated[1]["data"]["prompt"] == "new prompt"
        assert updated[1]["data"]["outputFormat"] == "json"
        assert updated[1]["data"]["model"] == "gpt-4o-mini"
        assert nodes[1]["data"]["prompt"] == "old prompt"

    def test_missing_node(self):
        with pytest.raises(NotFound):
            update_node_data([input_node()], "ghost", {"prompt": "x"})
