"""
Node executor: performs one node's work given the accumulated input.

Node types map to async executor functions through a small registry:

    @executor("ai")
    async def _exec_ai(data: AINodeData, input: Any, provider) -> NodeResult:
        ...

- ``input`` nodes pass their input through unchanged.
- ``ai`` nodes render the prompt with the upstream context, call the model
  provider and, for ``outputFormat == "json"``, coerce the answer through the
  node's compiled schema.

Provider errors propagate to the caller (the orchestrator records them as a
step failure). Output-parsing problems never do: unparsable JSON is wrapped as
``{"raw": text}`` and values that miss the schema are kept as-is.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from app.errors import ValidationError
from app.llm import ModelProvider, Usage, get_provider
from app.llm.pricing import estimate_cost
from app.models.run import StepMetadata, TokenUsage
from app.models.workflow import AINodeData, Node, NodeData, decode_node_data
from app.services.json_extract import extract_json
from app.services.schema_compiler import compile_schema

logger = logging.getLogger(__name__)


JSON_ONLY_INSTRUCTION = (
    "Return ONLY valid JSON that matches the expected structure. "
    "Do not include markdown or extra text."
)

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][\w-]*)\s*\}\}")


@dataclass
class NodeResult:
    output: Any
    metadata: Optional[StepMetadata] = None


# ---------------------------------------------------------------------------
# Executor registry
# ---------------------------------------------------------------------------

# Maps node type names to their async executor functions.
# Each executor receives (data, input, provider) and returns a NodeResult.
_registry: dict[str, Callable] = {}


def executor(node_type: str):
    """Decorator that registers an async executor function for a node type."""
    def decorator(fn: Callable):
        _registry[node_type] = fn
        return fn
    return decorator


def registered_node_types() -> list[str]:
    return sorted(_registry)


# ---------------------------------------------------------------------------
# Prompt rendering
# ---------------------------------------------------------------------------


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def _has_context(value: Any) -> bool:
    # Empty containers still count as an upstream output.
    if isinstance(value, (dict, list)):
        return True
    return bool(value)


def render_prompt(template: str, input: Any) -> str:
    """
    Render a node prompt against the upstream output.

    A single pass replaces ``{{key}}`` with the matching top-level value of
    ``input``; ``{{input}}`` falls back to ``input["text"]`` or the whole
    input. Unknown placeholders are left as written and substituted values
    are not scanned again. A JSON dump of the input is then prepended as
    context.
    """
    values = input if isinstance(input, dict) else {}

    def replace(match: re.Match) -> str:
        key = match.group(1)
        if key in values:
            return _stringify(values[key])
        if key == "input" and input is not None:
            return _stringify(values["text"] if "text" in values else input)
        return match.group(0)

    body = _PLACEHOLDER.sub(replace, template)
    if not _has_context(input):
        return body
    context = json.dumps(input, indent=2, ensure_ascii=False, default=str)
    return f"Context from previous step:\n{context}\n\n{body}"


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def _metadata(model: str, usage: Optional[Usage], elapsed_ms: int) -> StepMetadata:
    if usage is None:
        return StepMetadata(model=model, duration=elapsed_ms)
    return StepMetadata(
        model=model,
        tokens=TokenUsage(input=usage.input_tokens, output=usage.output_tokens),
        cost=estimate_cost(model, usage.input_tokens, usage.output_tokens),
        duration=elapsed_ms,
    )


@executor("input")
async def _exec_input(data: NodeData, input: Any, provider: Optional[ModelProvider] = None) -> NodeResult:
    return NodeResult(output=input)


@executor("ai")
async def _exec_ai(data: AINodeData, input: Any, provider: Optional[ModelProvider] = None) -> NodeResult:
    return await run_ai(data, input, provider=provider)


async def run_ai(
    data: AINodeData,
    input: Any,
    *,
    provider: Optional[ModelProvider] = None,
) -> NodeResult:
    """Call the model for an ``ai`` node config and shape its output."""
    provider = provider or get_provider(data.model)
    prompt = render_prompt(data.prompt, input)
    start = time.perf_counter()

    if data.output_format == "json":
        schema = compile_schema(data.schema_)
        native = data.web_search_options is None and provider.supports_structured_output(data.model)
        if native:
            generation = await provider.generate_structured(data.model, prompt, schema)
            output = schema.coerce(generation.object)
        else:
            logger.debug("Model %s has no native structured output; parsing text", data.model)
            generation = await provider.generate_text(
                data.model,
                f"{prompt}\n\n{JSON_ONLY_INSTRUCTION}",
                data.web_search_options,
            )
            output = schema.coerce(extract_json(generation.text))
    else:
        generation = await provider.generate_text(data.model, prompt, data.web_search_options)
        output = generation.text

    elapsed_ms = int((time.perf_counter() - start) * 1000)
    return NodeResult(output=output, metadata=_metadata(data.model, generation.usage, elapsed_ms))


async def execute_node(
    node: Node,
    input: Any,
    *,
    provider: Optional[ModelProvider] = None,
) -> NodeResult:
    """
    Execute one node.

    Raises:
        ValidationError: no executor is registered for the node type.
        ProviderError: the model provider failed (ai nodes).
    """
    exec_fn = _registry.get(node.type)
    if exec_fn is None:
        raise ValidationError(f"No executor for node type '{node.type}'")
    return await exec_fn(decode_node_data(node), input, provider)
