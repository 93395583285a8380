"""
Editor preview capability: run one prompt the way an ai node would.
"""

import logging
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.auth.access import AccessContext
from app.auth.dependencies import get_access_context
from app.errors import WorkflowEngineError
from app.llm import ModelProvider, get_model_provider
from app.models.workflow import CamelModel
from app.services.preview import execute_ai_action

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


class ExecuteAIRequest(CamelModel):
    prompt: str
    model: Optional[str] = None
    previous_output: Any = None
    output_format: Literal["text", "json"] = "text"
    schema_: Optional[Dict[str, Any]] = Field(None, alias="schema")
    search_options: Optional[Dict[str, Any]] = None


class ExecuteAIResponse(BaseModel):
    output_text: str
    output_parsed: Any = None
    model: str
    timestamp: int


@router.post("/execute", response_model=ExecuteAIResponse, response_model_exclude_unset=True)
async def execute_ai(
    request: ExecuteAIRequest,
    access: AccessContext = Depends(get_access_context),
    provider: Optional[ModelProvider] = Depends(get_model_provider),
):
    """
    Execute a single prompt for the editor's preview.

    The response keeps snake_case keys (``output_text``, ``output_parsed``)
    because the editor reads them as written.
    """
    try:
        result = await execute_ai_action(
            request.prompt,
            request.model,
            request.previous_output,
            request.output_format,
            request.schema_,
            request.search_options,
            provider=provider,
        )
        logger.debug("Preview call for %s by %s", result["model"], access.owner_id)
        return ExecuteAIResponse.model_validate(result)
    except WorkflowEngineError:
        raise
    except Exception as e:
        logger.exception("AI execution failed")
        raise WorkflowEngineError(f"AI execution failed: {str(e)}")
