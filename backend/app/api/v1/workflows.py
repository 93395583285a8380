"""
Workflow persistence API endpoints.

Nodes and edges are stored as the raw JSON the editor sent, so a saved graph
loads back exactly as it was written. Every workflow belongs to the
authenticated user that created it.

Updates may carry ``expectedVersion``; a stale version is rejected with 409
instead of silently overwriting a newer save.
"""

import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import Field

from app.auth.access import AccessContext
from app.auth.dependencies import get_access_context
from app.db.store import Store, get_store, new_id
from app.errors import WorkflowEngineError
from app.models.workflow import CamelModel, Workflow, validate_graph
from app.services import graph_editor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["workflows"])


class WorkflowCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: Literal["draft", "published", "archived"] = "draft"
    nodes: Optional[List[Dict[str, Any]]] = Field(None, description="ReactFlow nodes")
    edges: List[Dict[str, Any]] = Field(default_factory=list, description="ReactFlow edges")
    variables: Optional[List[Dict[str, Any]]] = None


class WorkflowUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[Literal["draft", "published", "archived"]] = None
    nodes: Optional[List[Dict[str, Any]]] = None
    edges: Optional[List[Dict[str, Any]]] = None
    variables: Optional[List[Dict[str, Any]]] = None
    expected_version: Optional[int] = None


class NodeDataPatch(CamelModel):
    data: Dict[str, Any]
    expected_version: Optional[int] = None


def _load_owned(store: Store, access: AccessContext, workflow_id: str) -> Workflow:
    return access.authorize(store.get_workflow(workflow_id), "Workflow", workflow_id)


@router.get("", response_model=List[Workflow])
async def list_workflows(
    access: AccessContext = Depends(get_access_context),
    store: Store = Depends(get_store),
):
    """List the caller's workflows, most recently updated first."""
    try:
        return store.list_workflows(access.owner_id)
    except WorkflowEngineError:
        raise
    except Exception as e:
        logger.exception("Failed to list workflows")
        raise WorkflowEngineError(f"Failed to list workflows: {str(e)}")


@router.post("", response_model=Workflow, status_code=201)
async def create_workflow(
    workflow: WorkflowCreate,
    access: AccessContext = Depends(get_access_context),
    store: Store = Depends(get_store),
):
    """
    Create a workflow. Without nodes it starts with a single input node.
    """
    try:
        workflow_id = new_id()
        nodes = workflow.nodes or graph_editor.default_nodes(workflow_id)
        validate_graph(nodes, workflow.edges)

        return store.create_workflow(Workflow(
            id=workflow_id,
            name=workflow.name,
            description=workflow.description,
            status=workflow.status,
            nodes=nodes,
            edges=workflow.edges,
            variables=workflow.variables,
            owner_id=access.owner_id,
        ))
    except WorkflowEngineError:
        raise
    except Exception as e:
        logger.exception("Failed to create workflow")
        raise WorkflowEngineError(f"Failed to create workflow: {str(e)}")


@router.get("/{workflow_id}", response_model=Workflow)
async def get_workflow(
    workflow_id: str,
    access: AccessContext = Depends(get_access_context),
    store: Store = Depends(get_store),
):
    try:
        return _load_owned(store, access, workflow_id)
    except WorkflowEngineError:
        raise
    except Exception as e:
        logger.exception("Failed to get workflow %s", workflow_id)
        raise WorkflowEngineError(f"Failed to get workflow: {str(e)}")


@router.put("/{workflow_id}", response_model=Workflow)
async def update_workflow(
    workflow_id: str,
    workflow: WorkflowUpdate,
    access: AccessContext = Depends(get_access_context),
    store: Store = Depends(get_store),
):
    """
    Update a workflow. Only the fields present in the body change.
    """
    try:
        existing = _load_owned(store, access, workflow_id)

        changes = workflow.model_dump(exclude_unset=True, exclude={"expected_version"})
        if "nodes" in changes or "edges" in changes:
            validate_graph(
                changes.get("nodes") if changes.get("nodes") is not None else existing.nodes,
                changes.get("edges") if changes.get("edges") is not None else existing.edges,
            )
        # Explicit nulls for the graph arrays mean "leave unchanged"
        changes = {k: v for k, v in changes.items() if not (k in ("nodes", "edges") and v is None)}

        return store.update_workflow(workflow_id, changes, expected_version=workflow.expected_version)
    except WorkflowEngineError:
        raise
    except Exception as e:
        logger.exception("Failed to update workflow %s", workflow_id)
        raise WorkflowEngineError(f"Failed to update workflow: {str(e)}")


@router.delete("/{workflow_id}", status_code=204)
async def delete_workflow(
    workflow_id: str,
    access: AccessContext = Depends(get_access_context),
    store: Store = Depends(get_store),
):
    """
    Delete a workflow together with its runs and steps.
    """
    try:
        _load_owned(store, access, workflow_id)
        store.delete_workflow(workflow_id)
        return Response(status_code=204)
    except WorkflowEngineError:
        raise
    except Exception as e:
        logger.exception("Failed to delete workflow %s", workflow_id)
        raise WorkflowEngineError(f"Failed to delete workflow: {str(e)}")


@router.post("/{workflow_id}/nodes/ai", response_model=Workflow, status_code=201)
async def add_ai_node(
    workflow_id: str,
    access: AccessContext = Depends(get_access_context),
    store: Store = Depends(get_store),
):
    """Append an ai node to the right of the rightmost node."""
    try:
        existing = _load_owned(store, access, workflow_id)
        nodes = graph_editor.add_ai_node(existing.nodes)
        return store.update_workflow(workflow_id, {"nodes": nodes}, expected_version=existing.version)
    except WorkflowEngineError:
        raise
    except Exception as e:
        logger.exception("Failed to add node to workflow %s", workflow_id)
        raise WorkflowEngineError(f"Failed to add node: {str(e)}")


@router.patch("/{workflow_id}/nodes/{node_id}", response_model=Workflow)
async def update_node(
    workflow_id: str,
    node_id: str,
    patch: NodeDataPatch,
    access: AccessContext = Depends(get_access_context),
    store: Store = Depends(get_store),
):
    """Shallow-merge fields into one node's data."""
    try:
        existing = _load_owned(store, access, workflow_id)
        nodes = graph_editor.update_node_data(existing.nodes, node_id, patch.data)
        expected = patch.expected_version if patch.expected_version is not None else existing.version
        return store.update_workflow(workflow_id, {"nodes": nodes}, expected_version=expected)
    except WorkflowEngineError:
        raise
    except Exception as e:
        logger.exception("Failed to update node %s", node_id)
        raise WorkflowEngineError(f"Failed to update node: {str(e)}")


@router.delete("/{workflow_id}/nodes/{node_id}", response_model=Workflow)
async def delete_node(
    workflow_id: str,
    node_id: str,
    access: AccessContext = Depends(get_access_context),
    store: Store = Depends(get_store),
):
    """Remove a node and every edge touching it."""
    try:
        existing = _load_owned(store, access, workflow_id)
        nodes, edges = graph_editor.delete_node(existing.nodes, existing.edges, node_id)
        return store.update_workflow(
            workflow_id,
            {"nodes": nodes, "edges": edges},
            expected_version=existing.version,
        )
    except WorkflowEngineError:
        raise
    except Exception as e:
        logger.exception("Failed to delete node %s", node_id)
        raise WorkflowEngineError(f"Failed to delete node: {str(e)}")
