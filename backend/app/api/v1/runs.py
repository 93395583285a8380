"""
Run API endpoints.

``POST /v1/workflows/{workflow_id}/runs`` executes a saved workflow (or one of
its nodes when ``stepId`` is given) and returns once the Run is terminal.
``GET /v1/runs/{run_id}`` reads a Run back with its Steps.
"""

import logging
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query

from app.auth.access import AccessContext
from app.auth.dependencies import get_access_context
from app.db.store import Store, get_store
from app.errors import AccessDenied, NotFound, WorkflowEngineError
from app.llm import ModelProvider, get_model_provider
from app.models.run import Run, RunMetadata, RunStatus, Step
from app.models.workflow import CamelModel
from app.services.workflow_executor import execute_step, execute_workflow, list_runs, load_run

logger = logging.getLogger(__name__)

router = APIRouter(tags=["runs"])


class StartRunRequest(CamelModel):
    input: Any = None
    step_id: Optional[str] = None


class RunDetail(CamelModel):
    run_id: str
    workflow_id: str
    status: RunStatus
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    metadata: RunMetadata
    steps: List[Step]
    created_at: datetime
    updated_at: datetime


@router.post("/workflows/{workflow_id}/runs")
async def start_run(
    workflow_id: str,
    request: StartRunRequest,
    access: AccessContext = Depends(get_access_context),
    store: Store = Depends(get_store),
    provider: Optional[ModelProvider] = Depends(get_model_provider),
):
    """
    Run a workflow to completion, or a single node when ``stepId`` is set.

    Returns ``{runId, status, output}`` (plus ``stepId`` in single-step mode).
    """
    try:
        if request.step_id:
            result = await execute_step(
                workflow_id,
                request.step_id,
                request.input,
                access=access,
                store=store,
                provider=provider,
            )
        else:
            result = await execute_workflow(
                workflow_id,
                request.input,
                access=access,
                store=store,
                provider=provider,
            )
    except WorkflowEngineError:
        raise
    except Exception as e:
        logger.exception("Failed to execute workflow %s", workflow_id)
        raise WorkflowEngineError(f"Failed to execute workflow: {str(e)}")

    body = {"runId": result.run_id, "status": result.status, "output": result.output}
    if result.step_id is not None:
        body["stepId"] = result.step_id
    return body


@router.get("/runs/{run_id}", response_model=RunDetail)
async def get_run(
    run_id: str,
    access: AccessContext = Depends(get_access_context),
    store: Store = Depends(get_store),
):
    """
    Read a Run with its Steps in execution order.

    Runs owned by someone else are reported as missing.
    """
    try:
        run, steps = load_run(run_id, access=access, store=store)
    except AccessDenied:
        raise NotFound(f"Run not found: {run_id}")
    except WorkflowEngineError:
        raise
    except Exception as e:
        logger.exception("Failed to load run %s", run_id)
        raise WorkflowEngineError(f"Failed to load run: {str(e)}")

    return RunDetail(
        run_id=run.id,
        workflow_id=run.workflow_id,
        status=run.status,
        input=run.input,
        output=run.output,
        error=run.error,
        metadata=run.metadata,
        steps=steps,
        created_at=run.created_at,
        updated_at=run.updated_at,
    )


@router.get("/workflows/{workflow_id}/runs", response_model=List[Run])
async def get_workflow_runs(
    workflow_id: str,
    limit: Optional[int] = Query(None, ge=1, le=100),
    access: AccessContext = Depends(get_access_context),
    store: Store = Depends(get_store),
):
    """List a workflow's runs, newest first."""
    try:
        return list_runs(workflow_id, access=access, store=store, limit=limit)
    except WorkflowEngineError:
        raise
    except Exception as e:
        logger.exception("Failed to list runs for workflow %s", workflow_id)
        raise WorkflowEngineError(f"Failed to list runs: {str(e)}")
