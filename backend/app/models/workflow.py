"""
Workflow graph models: the persisted shape of a workflow.

The editor persists ``nodes`` and ``edges`` as raw JSON (ReactFlow shape) and
they are stored untouched so a save/load round trip is byte-for-byte stable.
Typed views are produced on demand:

- ``validate_graph`` parses the raw arrays into ``Node`` / ``Edge`` models and
  checks the structural invariants (unique ids, edges reference real nodes).
- ``decode_node_data`` turns a node's opaque ``data`` blob into the typed
  config for its ``type`` (``InputNodeData`` or ``AINodeData``), filling in
  defaults for anything the editor left out.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from app.config import Settings
from app.errors import ValidationError


NodeType = Literal["input", "ai"]
OutputFormat = Literal["text", "json"]
WorkflowStatus = Literal["draft", "published", "archived"]
PropertyType = Literal["STR", "NUM", "BOOL", "ENUM", "OBJ", "ARR"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Snake-case fields in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


class Position(BaseModel):
    x: float = 0
    y: float = 0


class Node(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    type: str
    position: Position = Field(default_factory=Position)
    data: dict[str, Any] = Field(default_factory=dict)


class Edge(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None


# ---------------------------------------------------------------------------
# Structured output schema (authored in the editor's schema builder)
# ---------------------------------------------------------------------------


class SchemaProperty(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    type: PropertyType
    required: bool = True
    description: Optional[str] = None
    enum: Optional[list[str]] = None
    properties: Optional[list["SchemaProperty"]] = None
    items: Optional["SchemaProperty"] = None


class StructuredSchema(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = "output"
    properties: list[SchemaProperty] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Node data variants
# ---------------------------------------------------------------------------


class InputNodeData(CamelModel):
    kind: Literal["input"] = "input"
    text_input: str = ""
    file_input: Any = None
    workflow_id: Optional[str] = None


class AINodeData(CamelModel):
    kind: Literal["ai"] = "ai"
    prompt: str = ""
    model: str = ""
    output_format: OutputFormat = "text"
    # Kept as a raw dict; the schema compiler is lenient about drafts.
    schema_: Optional[dict[str, Any]] = Field(default=None, alias="schema")
    web_search_options: Optional[dict[str, Any]] = None


NodeData = Union[InputNodeData, AINodeData]


def decode_node_data(node: Node) -> Optional[NodeData]:
    """
    Decode a node's opaque data blob into its typed config.

    Values of the wrong shape fall back to the variant's defaults instead of
    failing the run. Unknown node types decode to None.
    """
    raw = node.data if isinstance(node.data, dict) else {}

    if node.type == "input":
        text = raw.get("textInput")
        return InputNodeData(
            text_input=text if isinstance(text, str) else "",
            file_input=raw.get("fileInput"),
            workflow_id=str(raw["workflowId"]) if raw.get("workflowId") else None,
        )

    if node.type == "ai":
        prompt = raw.get("prompt")
        model = raw.get("model")
        output_format = raw.get("outputFormat")
        schema = raw.get("schema")
        search = raw.get("webSearchOptions")
        return AINodeData(
            prompt=prompt if isinstance(prompt, str) else "",
            model=model.strip() if isinstance(model, str) and model.strip() else Settings.default_model(),
            output_format=output_format if output_format in ("text", "json") else "text",
            schema=schema if isinstance(schema, dict) else None,
            web_search_options=search if isinstance(search, dict) and search else None,
        )

    return None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_graph(
    nodes: list[dict[str, Any]],
    edges: list[dict[str, Any]],
) -> tuple[list[Node], list[Edge]]:
    """
    Parse raw nodes/edges and check structural invariants.

    Raises:
        ValidationError: malformed node/edge, duplicate node id, or an edge
            whose source/target is not a node of this workflow.
    """
    parsed_nodes: list[Node] = []
    seen: set[str] = set()
    for index, raw in enumerate(nodes):
        try:
            node = Node.model_validate(raw)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid node at index {index}: {e.errors()[0]['msg']}")
        if node.id in seen:
            raise ValidationError(f"Duplicate node ID '{node.id}'")
        seen.add(node.id)
        parsed_nodes.append(node)

    parsed_edges: list[Edge] = []
    for index, raw in enumerate(edges):
        try:
            edge = Edge.model_validate(raw)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid edge at index {index}: {e.errors()[0]['msg']}")
        if edge.source not in seen:
            raise ValidationError(f"Edge '{edge.id}' references unknown source node '{edge.source}'")
        if edge.target not in seen:
            raise ValidationError(f"Edge '{edge.id}' references unknown target node '{edge.target}'")
        parsed_edges.append(edge)

    return parsed_nodes, parsed_edges


# ---------------------------------------------------------------------------
# Workflow record
# ---------------------------------------------------------------------------


class Workflow(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    status: WorkflowStatus = "draft"
    nodes: list[dict[str, Any]] = Field(default_factory=list)
    edges: list[dict[str, Any]] = Field(default_factory=list)
    variables: Optional[list[dict[str, Any]]] = None
    owner_id: str
    version: int = 1
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def graph(self) -> tuple[list[Node], list[Edge]]:
        return validate_graph(self.nodes, self.edges)
