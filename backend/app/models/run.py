"""
Run and Step records.

A Run is one end-to-end execution attempt of a workflow; a Step is one node
invocation inside a Run. Both are created ``pending`` and end ``completed`` or
``failed``; terminal records are never reopened.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import Field

from app.models.workflow import CamelModel, utc_now


RunStatus = Literal["pending", "running", "completed", "failed"]
StepStatus = Literal["pending", "running", "completed", "failed"]

TERMINAL_STATUSES = ("completed", "failed")


class RunMetadata(CamelModel):
    total_steps: int = 0
    completed_steps: int = 0
    cost: Optional[float] = None
    duration: Optional[int] = None  # ms
    mode: Literal["workflow", "step"] = "workflow"


class TokenUsage(CamelModel):
    input: int = 0
    output: int = 0


class StepMetadata(CamelModel):
    model: Optional[str] = None
    tokens: Optional[TokenUsage] = None
    cost: Optional[float] = None
    duration: Optional[int] = None  # ms


class Run(CamelModel):
    id: str
    workflow_id: str
    owner_id: str
    status: RunStatus = "pending"
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    metadata: RunMetadata = Field(default_factory=RunMetadata)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class Step(CamelModel):
    id: str
    run_id: str
    owner_id: str
    node_id: str
    node_type: str
    status: StepStatus = "pending"
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    metadata: Optional[StepMetadata] = None
    # Creation sequence within the store; steps are listed ascending by it.
    sequence: int = 0
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
