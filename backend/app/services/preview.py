"""
Editor-side preview execution and autosave.

``PreviewSession`` mirrors a run inside one open editor session: it walks the
canvas nodes left to right through an ``execute_ai`` capability and keeps the
steps locally. Nothing is written to the store; the authoritative record of
an execution is a server-side Run.

``Autosaver`` debounces graph saves while the user edits.

``execute_ai_action`` is the capability the editor calls per ai node
(``POST /v1/ai/execute``).
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

from app.config import Settings
from app.errors import NotFound, ValidationError
from app.llm import ModelProvider
from app.models.workflow import AINodeData, InputNodeData, Node, decode_node_data
from app.services.node_executor import run_ai

logger = logging.getLogger(__name__)

DEFAULT_PREVIEW_INPUT = "Default input text"
DEFAULT_STEP_INPUT = "Default input"
DEFAULT_WORKFLOW_NAME = "My Workflow"

ExecuteAI = Callable[[AINodeData, Any], Awaitable[Any]]


async def execute_ai_action(
    prompt: str,
    model: Optional[str] = None,
    previous_output: Any = None,
    output_format: str = "text",
    schema: Any = None,
    search_options: Optional[dict[str, Any]] = None,
    *,
    provider: Optional[ModelProvider] = None,
) -> dict[str, Any]:
    """
    Run one prompt against a model the way an ai node would.

    Returns ``{output_text, output_parsed?, model, timestamp}``; ``output_parsed``
    is only present for JSON output. ``timestamp`` is epoch milliseconds.
    """
    data = decode_node_data(Node(
        id="preview",
        type="ai",
        position={"x": 0, "y": 0},
        data={
            "prompt": prompt,
            "model": model,
            "outputFormat": output_format,
            "schema": schema,
            "webSearchOptions": search_options,
        },
    ))
    result = await run_ai(data, previous_output, provider=provider)

    response: dict[str, Any] = {"model": data.model, "timestamp": int(time.time() * 1000)}
    if data.output_format == "json":
        response["output_text"] = json.dumps(result.output, ensure_ascii=False)
        response["output_parsed"] = result.output
    else:
        response["output_text"] = result.output
    return response


@dataclass
class PreviewStep:
    id: str
    step: int
    input: Any
    output: Any
    error: Optional[str] = None


@dataclass
class PreviewSession:
    """Local execution state for one editor session."""

    nodes: list[Node]
    execute_ai: ExecuteAI
    steps: list[PreviewStep] = field(default_factory=list)
    running_node_id: Optional[str] = None
    is_executing: bool = False
    execution_result: Optional[dict[str, Any]] = None

    @classmethod
    def from_raw(cls, nodes: list[Union[dict[str, Any], Node]], execute_ai: ExecuteAI) -> "PreviewSession":
        parsed = [n if isinstance(n, Node) else Node.model_validate(n) for n in nodes]
        return cls(nodes=parsed, execute_ai=execute_ai)

    def _input_text(self, node: Node) -> str:
        data = decode_node_data(node)
        return data.text_input if isinstance(data, InputNodeData) else ""

    def _ai_nodes(self) -> list[Node]:
        return sorted((n for n in self.nodes if n.type == "ai"), key=lambda n: n.position.x)

    async def run(self) -> dict[str, Any]:
        """Execute the whole canvas and return the execution result."""
        self.is_executing = True
        self.steps = []
        self.execution_result = None

        try:
            input_node = next((n for n in self.nodes if n.type == "input"), None)
            if input_node is None:
                raise ValidationError("No input node found. Add an input node to start the workflow.")

            input_step = PreviewStep(
                id=input_node.id,
                step=1,
                input=None,
                output={"text": self._input_text(input_node) or DEFAULT_PREVIEW_INPUT},
            )
            self.steps.append(input_step)
            current = input_step.output

            for index, node in enumerate(self._ai_nodes()):
                self.running_node_id = node.id
                step = PreviewStep(id=node.id, step=index + 2, input=current, output=None)
                try:
                    step.output = await self.execute_ai(decode_node_data(node), current)
                except Exception as e:
                    step.error = str(e) or type(e).__name__
                    self.steps.append(step)
                    raise
                self.steps.append(step)
                current = step.output

            self.execution_result = {"steps": list(self.steps)}
        except Exception as e:
            logger.warning("Preview run failed: %s", e)
            self.execution_result = {"error": str(e) or "Failed to execute workflow"}
        finally:
            self.is_executing = False
            self.running_node_id = None

        return self.execution_result

    async def run_step(self, node_id: str, provided_input: Any = None) -> Any:
        """
        Execute one node against ``provided_input`` or the last step's output.

        Errors are recorded on the appended step and re-raised.
        """
        node = next((n for n in self.nodes if n.id == node_id), None)
        if node is None:
            raise NotFound("Node not found")

        if node.type == "input":
            step = PreviewStep(
                id=node_id,
                step=1,
                input=None,
                output={"text": self._input_text(node) or provided_input or DEFAULT_STEP_INPUT},
            )
            self.steps = [step]
            self.execution_result = {"steps": [step]}
            return step.output

        if node.type != "ai":
            raise ValidationError(f"Cannot preview node type '{node.type}'")

        input = provided_input or (self.steps[-1].output if self.steps else None) or {}
        step = PreviewStep(id=node_id, step=len(self.steps) + 1, input=input, output=None)
        self.is_executing = True
        self.running_node_id = node_id
        try:
            step.output = await self.execute_ai(decode_node_data(node), input)
        except Exception as e:
            step.error = str(e) or "AI execution failed"
            self.steps = [*self.steps, step]
            self.execution_result = {"error": step.error}
            raise
        finally:
            self.is_executing = False
            self.running_node_id = None

        self.steps = [*self.steps, step]
        self.execution_result = {"steps": list(self.steps)}
        return step.output


# ---------------------------------------------------------------------------
# Autosave
# ---------------------------------------------------------------------------


def _snapshot(name: Optional[str], nodes: list[dict[str, Any]], edges: list[dict[str, Any]]) -> str:
    """Fingerprint of the fields whose change should trigger a save."""
    return json.dumps(
        {
            "name": name or DEFAULT_WORKFLOW_NAME,
            "nodes": [
                {"id": n.get("id"), "t": n.get("type"), "p": n.get("position"), "d": n.get("data")}
                for n in nodes
            ],
            "edges": [
                {
                    "id": e.get("id"),
                    "s": e.get("source"),
                    "t": e.get("target"),
                    "sh": e.get("sourceHandle"),
                    "th": e.get("targetHandle"),
                }
                for e in edges
            ],
        },
        sort_keys=True,
        default=str,
    )


class Autosaver:
    """
    Debounced persistence of ``{name, nodes, edges}``.

    Every ``notify`` restarts the delay; a snapshot equal to the last saved
    one is ignored. A save that has already started is not interrupted by
    later edits.
    """

    def __init__(
        self,
        save: Callable[[dict[str, Any]], Awaitable[Any]],
        *,
        delay: Optional[float] = None,
    ):
        self._save = save
        self.delay = Settings.autosave_debounce_seconds() if delay is None else delay
        self._last_saved: Optional[str] = None
        self._pending: Optional[tuple[str, dict[str, Any]]] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def mark_saved(self, name: Optional[str], nodes: list[dict[str, Any]], edges: list[dict[str, Any]]) -> None:
        """Record the state loaded from the server so it is not saved back."""
        self._last_saved = _snapshot(name, nodes, edges)

    def notify(self, name: Optional[str], nodes: list[dict[str, Any]], edges: list[dict[str, Any]]) -> None:
        snapshot = _snapshot(name, nodes, edges)
        if snapshot == self._last_saved:
            return

        self._cancel_timer()
        self._pending = (snapshot, {"name": name or DEFAULT_WORKFLOW_NAME, "nodes": nodes, "edges": edges})
        self._task = asyncio.get_running_loop().create_task(self._save_later())

    async def _save_later(self) -> None:
        await asyncio.sleep(self.delay)
        self._task = None
        await self._save_pending()

    async def _save_pending(self) -> None:
        if self._pending is None:
            return
        snapshot, payload = self._pending
        self._pending = None
        self._last_saved = snapshot
        try:
            await self._save(payload)
        except Exception:
            logger.exception("Autosave failed")

    def _cancel_timer(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def flush(self) -> None:
        """Save any pending snapshot now."""
        self._cancel_timer()
        await self._save_pending()

    def cancel(self) -> None:
        """Drop any pending snapshot without saving it."""
        self._cancel_timer()
        self._pending = None
