"""
Workflow execution engine.

Takes a persisted workflow, establishes the execution order, drives the node
executor across it and records a Run plus one Step per node invocation.

Key concepts:
- Run lifecycle: pending -> running -> completed | failed. Terminal runs are
  never reopened; a failed run is retried by starting a new one.
- Ordering policy (WORKFLOW_ORDERING):
  * "position" (default): ai nodes sorted by canvas x position. Edges are
    not consulted.
  * "topological": Kahn's algorithm over the edges, ties broken by canvas x
    position; a cycle raises GraphError.
  Either way execution is strictly sequential and each step's input is the
  previous step's output.
- The input node is not executed: its textInput seeds the first step.
- A failing step aborts the run. Steps already written stay as an audit trail.
- Each step runs under a timeout; an optional CancellationToken is checked
  before every step.
"""

from __future__ import annotations

import asyncio
import heapq
import logging
import time
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from app.auth.access import AccessContext
from app.config import OrderingPolicy, Settings
from app.db.store import Store, new_id
from app.errors import (
    GraphError,
    NotFound,
    RunCancelled,
    RunFailed,
    StepTimeout,
    ValidationError,
    WorkflowEngineError,
)
from app.llm import ModelProvider
from app.models.run import Run, RunMetadata, Step
from app.models.workflow import Edge, InputNodeData, Node, decode_node_data, utc_now
from app.services.node_executor import NodeResult, execute_node

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


class WorkflowExecutionResult(BaseModel):
    run_id: str
    status: Literal["completed", "failed"]
    output: Any = None
    error: Optional[str] = None
    step_id: Optional[str] = None
    steps: list[Step] = Field(default_factory=list)


class CancellationToken:
    """Cooperative cancellation, checked by the orchestrator before each step."""

    def __init__(self) -> None:
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    def cancel(self, reason: str = "Run cancelled") -> None:
        if self._reason is None:
            self._reason = reason

    def raise_if_cancelled(self) -> None:
        if self._reason is not None:
            raise RunCancelled(self._reason)


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


def _build_dependency_graph(
    nodes: list[Node],
    edges: list[Edge],
) -> tuple[dict[str, int], dict[str, list[str]]]:
    """
    Build dependency tracking structures from edges.

    Returns:
        in_degree: count of unsatisfied dependencies for each node
        adjacency: node -> list of downstream nodes to unblock
    """
    in_degree: dict[str, int] = {n.id: 0 for n in nodes}
    adjacency: dict[str, list[str]] = {n.id: [] for n in nodes}

    for edge in edges:
        if edge.source not in in_degree or edge.target not in in_degree:
            raise GraphError(f"Edge '{edge.id}' references a node outside the workflow")
        # Multiple edges between the same pair (different handles) count once
        if edge.target not in adjacency[edge.source]:
            adjacency[edge.source].append(edge.target)
            in_degree[edge.target] += 1

    return in_degree, adjacency


def _position_order(nodes: list[Node]) -> list[Node]:
    ai_nodes = [n for n in nodes if n.type == "ai"]
    # sorted() is stable: equal x keeps the saved order
    return sorted(ai_nodes, key=lambda n: n.position.x)


def _topological_order(nodes: list[Node], edges: list[Edge]) -> list[Node]:
    in_degree, adjacency = _build_dependency_graph(nodes, edges)
    index = {n.id: i for i, n in enumerate(nodes)}
    node_map = {n.id: n for n in nodes}

    ready = [(node_map[nid].position.x, index[nid], nid) for nid, deg in in_degree.items() if deg == 0]
    heapq.heapify(ready)
    ordered: list[Node] = []

    while ready:
        _, _, node_id = heapq.heappop(ready)
        ordered.append(node_map[node_id])
        for downstream in adjacency[node_id]:
            in_degree[downstream] -= 1
            if in_degree[downstream] == 0:
                heapq.heappush(ready, (node_map[downstream].position.x, index[downstream], downstream))

    if len(ordered) != len(nodes):
        stuck = sorted(nid for nid, deg in in_degree.items() if deg > 0)
        raise GraphError(f"Workflow graph contains a cycle involving nodes: {', '.join(stuck)}")

    return [n for n in ordered if n.type == "ai"]


def compute_execution_order(
    nodes: list[Node],
    edges: list[Edge],
    policy: Optional[OrderingPolicy] = None,
) -> list[Node]:
    """The ai nodes to execute, in order."""
    policy = policy or Settings.ordering_policy()
    if policy == "topological":
        return _topological_order(nodes, edges)
    return _position_order(nodes)


def find_input_node(nodes: list[Node]) -> Node:
    node = next((n for n in nodes if n.type == "input"), None)
    if node is None:
        raise ValidationError("No input node found. Add an input node to start the workflow.")
    return node


def build_seed(input_node: Node, seed_input: Any) -> Any:
    """
    Merge the caller's input with the input node's text.

    A ``text`` key supplied by the caller takes precedence over the node's
    textInput.
    """
    data = decode_node_data(input_node)
    text = data.text_input if isinstance(data, InputNodeData) else ""
    if seed_input is None:
        seed_input = {}
    if not isinstance(seed_input, dict):
        return seed_input
    seed = dict(seed_input)
    if text:
        seed.setdefault("text", text)
    return seed


# ---------------------------------------------------------------------------
# Step execution
# ---------------------------------------------------------------------------


def _error_message(error: BaseException) -> str:
    if isinstance(error, WorkflowEngineError):
        return error.message
    return f"{type(error).__name__}: {error}"


async def _run_node_step(
    *,
    store: Store,
    access: AccessContext,
    run_id: str,
    node: Node,
    input: Any,
    provider: Optional[ModelProvider],
    timeout: float,
) -> tuple[Step, NodeResult]:
    """Create a Step, execute the node under the timeout and record the outcome."""
    step = store.create_step(Step(
        id=new_id(),
        run_id=run_id,
        owner_id=access.owner_id,
        node_id=node.id,
        node_type=node.type,
        status="pending",
        input=input,
    ))
    step = store.update_step(step.id, status="running")
    logger.debug("Started step %s for node %s", step.id, node.id)

    try:
        result = await asyncio.wait_for(execute_node(node, input, provider=provider), timeout=timeout)
    except asyncio.TimeoutError:
        error = StepTimeout(f"Node {node.id} timed out after {timeout:g}s")
        store.update_step(step.id, status="failed", error=error.message, completed_at=utc_now())
        raise error
    except asyncio.CancelledError:
        store.update_step(step.id, status="failed", error="Execution cancelled", completed_at=utc_now())
        raise
    except Exception as e:
        error_msg = _error_message(e)
        logger.exception("Node %s failed: %s", node.id, error_msg)
        store.update_step(step.id, status="failed", error=error_msg, completed_at=utc_now())
        raise

    step = store.update_step(
        step.id,
        status="completed",
        output=result.output,
        metadata=result.metadata,
        completed_at=utc_now(),
    )
    return step, result


def _load_workflow(store: Store, access: AccessContext, workflow_id: str):
    workflow = access.authorize(store.get_workflow(workflow_id), "Workflow", workflow_id)
    nodes, edges = workflow.graph()
    return workflow, nodes, edges


def _fail_run(store: Store, run_id: str, error: BaseException, metadata: RunMetadata) -> RunFailed:
    message = _error_message(error)
    store.update_run(run_id, status="failed", error=message, metadata=metadata)
    logger.info("Run %s failed: %s", run_id, message)
    return RunFailed(message, run_id=run_id)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


async def execute_workflow(
    workflow_id: str,
    seed_input: Any,
    *,
    access: AccessContext,
    store: Store,
    provider: Optional[ModelProvider] = None,
    cancel_token: Optional[CancellationToken] = None,
    ordering: Optional[OrderingPolicy] = None,
) -> WorkflowExecutionResult:
    """
    Execute every ai node of a workflow in order and record the Run.

    Raises:
        NotFound / AccessDenied: the workflow is missing or not the caller's.
        ValidationError: the graph is malformed or has no input node.
        GraphError: the topological order hit a cycle.
        RunFailed: a step failed (or the run was cancelled); the Run is
            persisted as ``failed`` and its id is on the exception.
    """
    _, nodes, edges = _load_workflow(store, access, workflow_id)
    input_node = find_input_node(nodes)
    # Ordering problems are graph problems: reported before any Run exists
    order = compute_execution_order(nodes, edges, ordering)
    timeout = Settings.step_timeout_seconds()

    metadata = RunMetadata(total_steps=len(nodes), completed_steps=0)
    run = store.create_run(Run(
        id=new_id(),
        workflow_id=workflow_id,
        owner_id=access.owner_id,
        status="pending",
        input=seed_input,
        metadata=metadata,
    ))
    store.update_run(run.id, status="running")
    logger.info("Run %s started for workflow %s", run.id, workflow_id)

    start_time = time.perf_counter()
    costs: list[float] = []

    def snapshot() -> RunMetadata:
        return metadata.model_copy(update={
            "cost": sum(costs) if costs else None,
            "duration": int((time.perf_counter() - start_time) * 1000),
        })

    current = build_seed(input_node, seed_input)
    try:
        for node in order:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            _, result = await _run_node_step(
                store=store,
                access=access,
                run_id=run.id,
                node=node,
                input=current,
                provider=provider,
                timeout=timeout,
            )
            current = result.output
            if result.metadata is not None and result.metadata.cost is not None:
                costs.append(result.metadata.cost)
            metadata = metadata.model_copy(update={"completed_steps": metadata.completed_steps + 1})
            store.update_run(run.id, metadata=snapshot())
    except asyncio.CancelledError as e:
        _fail_run(store, run.id, RunCancelled("Run cancelled"), snapshot())
        raise e
    except Exception as e:
        raise _fail_run(store, run.id, e, snapshot()) from e

    store.update_run(run.id, status="completed", output=current, metadata=snapshot())
    logger.info("Run %s completed (%d steps)", run.id, metadata.completed_steps)

    return WorkflowExecutionResult(
        run_id=run.id,
        status="completed",
        output=current,
        steps=store.list_steps(run.id),
    )


async def execute_step(
    workflow_id: str,
    node_id: str,
    input: Any,
    *,
    access: AccessContext,
    store: Store,
    provider: Optional[ModelProvider] = None,
) -> WorkflowExecutionResult:
    """
    Execute exactly one node against caller-supplied input.

    A Run record (``metadata.mode == "step"``) parents the single Step; its
    terminal status follows the Step's.
    """
    workflow, nodes, _ = _load_workflow(store, access, workflow_id)
    node = next((n for n in nodes if n.id == node_id), None)
    if node is None:
        raise NotFound(f"Node not found: {node_id}")

    metadata = RunMetadata(total_steps=1, completed_steps=0, mode="step")
    run = store.create_run(Run(
        id=new_id(),
        workflow_id=workflow.id,
        owner_id=access.owner_id,
        status="pending",
        input=input,
        metadata=metadata,
    ))
    store.update_run(run.id, status="running")

    start_time = time.perf_counter()
    try:
        step, result = await _run_node_step(
            store=store,
            access=access,
            run_id=run.id,
            node=node,
            input=input,
            provider=provider,
            timeout=Settings.step_timeout_seconds(),
        )
    except Exception as e:
        failed = metadata.model_copy(update={"duration": int((time.perf_counter() - start_time) * 1000)})
        raise _fail_run(store, run.id, e, failed) from e

    metadata = metadata.model_copy(update={
        "completed_steps": 1,
        "cost": result.metadata.cost if result.metadata else None,
        "duration": int((time.perf_counter() - start_time) * 1000),
    })
    store.update_run(run.id, status="completed", output=result.output, metadata=metadata)

    return WorkflowExecutionResult(
        run_id=run.id,
        status="completed",
        output=result.output,
        step_id=step.id,
        steps=[step],
    )


def load_run(run_id: str, *, access: AccessContext, store: Store) -> tuple[Run, list[Step]]:
    """A run and its steps in creation order."""
    run = access.authorize(store.get_run(run_id), "Run", run_id)
    steps = [access.authorize(s, "Step", s.id) for s in store.list_steps(run.id)]
    return run, steps


def list_runs(
    workflow_id: str,
    *,
    access: AccessContext,
    store: Store,
    limit: Optional[int] = None,
) -> list[Run]:
    access.authorize(store.get_workflow(workflow_id), "Workflow", workflow_id)
    return store.list_runs(workflow_id, limit=limit)
