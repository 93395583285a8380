"""
Tests for the in-memory store, graph validation and ownership checks.
"""

from types import SimpleNamespace

import pytest

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from conftest import TEST_USER_1_ID, TEST_USER_2_ID, ai_node, edge, input_node, save_workflow
from app.auth.access import AccessContext
from app.errors import AccessDenied, ConflictError, NotFound, ValidationError
from app.db.store import SupabaseStore
from app.models.run import Run, RunMetadata, Step
from app.models.workflow import AINodeData, InputNodeData, Node, decode_node_data, validate_graph


class TestWorkflowRecords:
    def test_create_and_get_are_copies(self, store):
        workflow = save_workflow(store, [input_node("x")])

        loaded = store.get_workflow(workflow.id)
        loaded.nodes[0]["data"]["textInput"] = "mutated"

        assert store.get_workflow(workflow.id).nodes[0]["data"]["textInput"] == "x"

    def test_update_bumps_version(self, store):
        workflow = save_workflow(store, [input_node()])

        updated = store.update_workflow(workflow.id, {"name": "Renamed"})

        assert updated.version == 2
        assert updated.name == "Renamed"
        assert updated.updated_at >= workflow.updated_at

    def test_stale_version_rejected(self, store):
        workflow = save_workflow(store, [input_node()])
        store.update_workflow(workflow.id, {"name": "A"}, expected_version=1)

        with pytest.raises(ConflictError):
            store.update_workflow(workflow.id, {"name": "B"}, expected_version=1)

        assert store.get_workflow(workflow.id).name == "A"

    def test_update_missing(self, store):
        with pytest.raises(NotFound):
            store.update_workflow("missing", {"name": "x"})

    def test_list_by_owner(self, store):
        mine = save_workflow(store, [input_node()])
        save_workflow(store, [input_node()], owner_id=TEST_USER_2_ID)

        assert [w.id for w in store.list_workflows(TEST_USER_1_ID)] == [mine.id]

    def test_delete_cascades(self, store):
        workflow = save_workflow(store, [input_node()])
        store.create_run(Run(id="r1", workflow_id=workflow.id, owner_id=TEST_USER_1_ID))
        store.create_step(Step(id="s1", run_id="r1", owner_id=TEST_USER_1_ID, node_id="a", node_type="ai"))

        store.delete_workflow(workflow.id)

        assert store.get_workflow(workflow.id) is None
        assert store.get_run("r1") is None
        assert store.get_step("s1") is None


class TestRunAndStepRecords:
    def test_steps_listed_in_creation_order(self, store):
        store.create_run(Run(id="r1", workflow_id="wf", owner_id=TEST_USER_1_ID))
        for step_id in ("c", "a", "b"):
            store.create_step(Step(id=step_id, run_id="r1", owner_id=TEST_USER_1_ID, node_id=step_id, node_type="ai"))

        assert [s.id for s in store.list_steps("r1")] == ["c", "a", "b"]

    def test_update_run_status(self, store):
        store.create_run(Run(id="r1", workflow_id="wf", owner_id=TEST_USER_1_ID))

        updated = store.update_run("r1", status="completed", output={"ok": True})

        assert updated.status == "completed"
        assert updated.is_terminal
        assert store.get_run("r1").output == {"ok": True}

    def test_update_missing_step(self, store):
        with pytest.raises(NotFound):
            store.update_step("missing", status="failed")


class TestAccessContext:
    def test_owner_allowed(self, store):
        workflow = save_workflow(store, [input_node()])
        assert AccessContext(TEST_USER_1_ID).authorize(workflow, "Workflow").id == workflow.id

    def test_missing_record(self):
        with pytest.raises(NotFound, match="Run not found: r9"):
            AccessContext(TEST_USER_1_ID).authorize(None, "Run", "r9")

    def test_other_owner(self, store):
        workflow = save_workflow(store, [input_node()], owner_id=TEST_USER_2_ID)
        with pytest.raises(AccessDenied):
            AccessContext(TEST_USER_1_ID).authorize(workflow, "Workflow")


class TestGraphModel:
    def test_validate_graph_parses(self):
        nodes, edges = validate_graph([input_node(), ai_node("a", 300)], [edge("input-1", "a")])
        assert [n.id for n in nodes] == ["input-1", "a"]
        assert edges[0].source == "input-1"

    def test_missing_node_id(self):
        with pytest.raises(ValidationError):
            validate_graph([{"type": "ai", "position": {"x": 0, "y": 0}}], [])

    def test_unknown_edge_source(self):
        with pytest.raises(ValidationError, match="unknown source"):
            validate_graph([input_node()], [edge("ghost", "input-1")])

    def test_decode_input_defaults(self):
        node = Node.model_validate({"id": "i", "type": "input", "position": {"x": 0, "y": 0}, "data": {"textInput": 5}})
        data = decode_node_data(node)
        assert isinstance(data, InputNodeData)
        assert data.text_input == ""

    def test_decode_ai_defaults(self):
        node = Node.model_validate({
            "id": "a",
            "type": "ai",
            "position": {"x": 0, "y": 0},
            "data": {"outputFormat": "xml", "schema": "nope"},
        })
        data = decode_node_data(node)
        assert isinstance(data, AINodeData)
        assert data.prompt == ""
        assert data.model == "gpt-4o-mini"
        assert data.output_format == "text"
        assert data.schema_ is None

    def test_decode_unknown_type(self):
        node = Node.model_validate({"id": "v", "type": "video", "position": {"x": 0, "y": 0}})
        assert decode_node_data(node) is None


class FakeTable:
    """Enough of the supabase query builder for SupabaseStore."""

    def __init__(self, rows):
        self.rows = rows
        self.filters = []
        self.action = ("select", None)
        self.order_by = None
        self.max_rows = None

    def select(self, *_):
        self.action = ("select", None)
        return self

    def insert(self, row):
        self.action = ("insert", row)
        return self

    def update(self, row):
        self.action = ("update", row)
        return self

    def delete(self):
        self.action = ("delete", None)
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, count):
        self.max_rows = count
        return self

    def _matches(self, row):
        return all(row.get(column) == value for column, value in self.filters)

    def execute(self):
        kind, payload = self.action
        if kind == "insert":
            row = dict(payload)
            if "sequence" not in row:
                row["sequence"] = len(self.rows) + 1
            self.rows.append(row)
            return SimpleNamespace(data=[row])
        matched = [r for r in self.rows if self._matches(r)]
        if kind == "update":
            for row in matched:
                row.update(payload)
            return SimpleNamespace(data=[dict(r) for r in matched])
        if kind == "delete":
            self.rows[:] = [r for r in self.rows if not self._matches(r)]
            return SimpleNamespace(data=matched)
        if self.order_by:
            column, desc = self.order_by
            matched.sort(key=lambda r: r[column], reverse=desc)
        if self.max_rows:
            matched = matched[:self.max_rows]
        return SimpleNamespace(data=[dict(r) for r in matched])


class FakeSupabase:
    def __init__(self):
        self.tables = {"workflows": [], "runs": [], "steps": []}

    def table(self, name):
        return FakeTable(self.tables[name])


class TestSupabaseStore:
    def make_store(self):
        return SupabaseStore(client=FakeSupabase())

    def test_workflow_round_trip(self):
        store = self.make_store()
        workflow = save_workflow(store, [input_node("x"), ai_node("a", 300)], [edge("input-1", "a")])

        loaded = store.get_workflow(workflow.id)

        assert loaded.nodes == workflow.nodes
        assert loaded.edges == workflow.edges
        assert loaded.owner_id == TEST_USER_1_ID

    def test_compare_and_set_version(self):
        store = self.make_store()
        workflow = save_workflow(store, [input_node()])

        updated = store.update_workflow(workflow.id, {"name": "A"}, expected_version=1)
        assert updated.version == 2

        with pytest.raises(ConflictError):
            store.update_workflow(workflow.id, {"name": "B"}, expected_version=1)
        assert store.get_workflow(workflow.id).name == "A"

    def test_update_missing_workflow(self):
        with pytest.raises(NotFound):
            self.make_store().update_workflow("missing", {"name": "x"})

    def test_run_metadata_round_trip(self):
        store = self.make_store()
        store.create_run(Run(id="r1", workflow_id="wf", owner_id=TEST_USER_1_ID))

        store.update_run("r1", status="completed", metadata=RunMetadata(total_steps=2, completed_steps=2, cost=0.5))

        run = store.get_run("r1")
        assert run.status == "completed"
        assert run.metadata.completed_steps == 2
        assert run.metadata.cost == 0.5

    def test_steps_ordered_by_sequence(self):
        store = self.make_store()
        for step_id in ("b", "a"):
            store.create_step(Step(id=step_id, run_id="r1", owner_id=TEST_USER_1_ID, node_id=step_id, node_type="ai"))

        assert [s.id for s in store.list_steps("r1")] == ["b", "a"]
