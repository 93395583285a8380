"""
Error taxonomy for the workflow engine.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer renders it with. The FastAPI exception handler in ``app.main`` turns
any ``WorkflowEngineError`` into ``{"error": {"code", "message"}}``.
"""

from __future__ import annotations


class WorkflowEngineError(Exception):
    """Base class for errors surfaced to API callers."""

    code: str = "internal_error"
    status_code: int = 500

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {"error": {"code": self.code, "message": self.message}}


class NotFound(WorkflowEngineError):
    code = "not_found"
    status_code = 404


class Unauthorized(WorkflowEngineError):
    """Missing, expired or unverifiable bearer token."""

    code = "unauthorized"
    status_code = 401


class AccessDenied(WorkflowEngineError):
    code = "access_denied"
    status_code = 403


class ValidationError(WorkflowEngineError):
    """Malformed graph, schema reference or request payload."""

    code = "validation_error"
    status_code = 400


class ConflictError(WorkflowEngineError):
    """A workflow update was based on a stale version."""

    code = "conflict"
    status_code = 409


class GraphError(WorkflowEngineError):
    """Cycle or dangling edge found while ordering the graph."""

    code = "graph_error"
    status_code = 400


class ProviderError(WorkflowEngineError):
    """Transport, quota or configuration failure of the model provider."""

    code = "provider_error"
    status_code = 502


class StepTimeout(WorkflowEngineError):
    code = "timeout"
    status_code = 504


class RunCancelled(WorkflowEngineError):
    code = "cancelled"
    status_code = 409


class RunFailed(WorkflowEngineError):
    """A run reached the terminal ``failed`` state."""

    code = "run_failed"
    status_code = 500

    def __init__(self, message: str = "", run_id: str | None = None):
        super().__init__(message)
        self.run_id = run_id


class ParseError(Exception):
    """
    Model output could not be parsed as JSON.

    Never surfaced to callers: the node executor recovers with a fallback
    value.
    """
