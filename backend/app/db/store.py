"""
Document store for workflows, runs and steps.

The engine only needs a handful of operations: create/get/update by id, plus
indexed lookups of runs by workflow and steps by run (ascending by creation).
Two implementations share the ``Store`` interface:

- ``MemoryStore``: process-local, used for local development and tests.
- ``SupabaseStore``: tables ``workflows``, ``runs`` and ``steps``.

Records are returned as copies; mutating a returned record never changes the
stored one. Ownership is not checked here (see ``app.auth.access``).
"""

from __future__ import annotations

import itertools
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, Optional

from app.config import Settings
from app.errors import ConflictError, NotFound
from app.models.run import Run, Step
from app.models.workflow import Workflow, utc_now

logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


class Store(ABC):
    # ---- workflows ----

    @abstractmethod
    def create_workflow(self, workflow: Workflow) -> Workflow: ...

    @abstractmethod
    def get_workflow(self, workflow_id: str) -> Optional[Workflow]: ...

    @abstractmethod
    def list_workflows(self, owner_id: str) -> list[Workflow]:
        """Workflows of one owner, most recently updated first."""

    @abstractmethod
    def update_workflow(
        self,
        workflow_id: str,
        changes: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Workflow:
        """
        Apply ``changes`` and bump ``version``.

        Raises:
            NotFound: no such workflow.
            ConflictError: ``expected_version`` is set and differs from the
                stored version.
        """

    @abstractmethod
    def delete_workflow(self, workflow_id: str) -> None: ...

    # ---- runs ----

    @abstractmethod
    def create_run(self, run: Run) -> Run: ...

    @abstractmethod
    def get_run(self, run_id: str) -> Optional[Run]: ...

    @abstractmethod
    def update_run(self, run_id: str, **changes: Any) -> Run: ...

    @abstractmethod
    def list_runs(self, workflow_id: str, limit: Optional[int] = None) -> list[Run]:
        """Runs of a workflow, newest first."""

    # ---- steps ----

    @abstractmethod
    def create_step(self, step: Step) -> Step: ...

    @abstractmethod
    def get_step(self, step_id: str) -> Optional[Step]: ...

    @abstractmethod
    def update_step(self, step_id: str, **changes: Any) -> Step: ...

    @abstractmethod
    def list_steps(self, run_id: str) -> list[Step]:
        """Steps of a run in creation order."""


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class MemoryStore(Store):
    def __init__(self) -> None:
        self._workflows: dict[str, Workflow] = {}
        self._runs: dict[str, Run] = {}
        self._steps: dict[str, Step] = {}
        self._sequence = itertools.count(1)
        self._lock = threading.Lock()

    @staticmethod
    def _patch(record, changes: dict[str, Any]):
        # Round-trip through validation so nested dicts become models again.
        data = record.model_dump()
        data.update(changes)
        return type(record).model_validate(data)

    def create_workflow(self, workflow: Workflow) -> Workflow:
        with self._lock:
            self._workflows[workflow.id] = workflow.model_copy(deep=True)
        return workflow.model_copy(deep=True)

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        workflow = self._workflows.get(workflow_id)
        return workflow.model_copy(deep=True) if workflow else None

    def list_workflows(self, owner_id: str) -> list[Workflow]:
        owned = [w for w in self._workflows.values() if w.owner_id == owner_id]
        owned.sort(key=lambda w: w.updated_at, reverse=True)
        return [w.model_copy(deep=True) for w in owned]

    def update_workflow(self, workflow_id, changes, expected_version=None):
        with self._lock:
            existing = self._workflows.get(workflow_id)
            if existing is None:
                raise NotFound(f"Workflow not found: {workflow_id}")
            if expected_version is not None and existing.version != expected_version:
                raise ConflictError(
                    f"Workflow {workflow_id} is at version {existing.version}, "
                    f"update was based on version {expected_version}"
                )
            updated = self._patch(
                existing,
                {**changes, "version": existing.version + 1, "updated_at": utc_now()},
            )
            self._workflows[workflow_id] = updated
        return updated.model_copy(deep=True)

    def delete_workflow(self, workflow_id: str) -> None:
        with self._lock:
            self._workflows.pop(workflow_id, None)
            run_ids = {rid for rid, r in self._runs.items() if r.workflow_id == workflow_id}
            for rid in run_ids:
                del self._runs[rid]
            for sid in [sid for sid, s in self._steps.items() if s.run_id in run_ids]:
                del self._steps[sid]

    def create_run(self, run: Run) -> Run:
        with self._lock:
            self._runs[run.id] = run.model_copy(deep=True)
        return run.model_copy(deep=True)

    def get_run(self, run_id: str) -> Optional[Run]:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    def update_run(self, run_id: str, **changes: Any) -> Run:
        with self._lock:
            existing = self._runs.get(run_id)
            if existing is None:
                raise NotFound(f"Run not found: {run_id}")
            updated = self._patch(existing, {**changes, "updated_at": utc_now()})
            self._runs[run_id] = updated
        return updated.model_copy(deep=True)

    def list_runs(self, workflow_id: str, limit: Optional[int] = None) -> list[Run]:
        runs = [r for r in self._runs.values() if r.workflow_id == workflow_id]
        runs.sort(key=lambda r: r.created_at, reverse=True)
        if limit:
            runs = runs[:limit]
        return [r.model_copy(deep=True) for r in runs]

    def create_step(self, step: Step) -> Step:
        with self._lock:
            stored = step.model_copy(update={"sequence": next(self._sequence)}, deep=True)
            self._steps[stored.id] = stored
        return stored.model_copy(deep=True)

    def get_step(self, step_id: str) -> Optional[Step]:
        step = self._steps.get(step_id)
        return step.model_copy(deep=True) if step else None

    def update_step(self, step_id: str, **changes: Any) -> Step:
        with self._lock:
            existing = self._steps.get(step_id)
            if existing is None:
                raise NotFound(f"Step not found: {step_id}")
            updated = self._patch(existing, changes)
            self._steps[step_id] = updated
        return updated.model_copy(deep=True)

    def list_steps(self, run_id: str) -> list[Step]:
        steps = [s for s in self._steps.values() if s.run_id == run_id]
        steps.sort(key=lambda s: s.sequence)
        return [s.model_copy(deep=True) for s in steps]


# ---------------------------------------------------------------------------
# Supabase
# ---------------------------------------------------------------------------


def _to_row(record, exclude: set[str] | None = None) -> dict[str, Any]:
    return record.model_dump(mode="json", exclude=exclude)


def _changes_to_row(changes: dict[str, Any]) -> dict[str, Any]:
    row: dict[str, Any] = {}
    for key, value in changes.items():
        if hasattr(value, "model_dump"):
            row[key] = value.model_dump(mode="json")
        elif hasattr(value, "isoformat"):
            row[key] = value.isoformat()
        else:
            row[key] = value
    return row


class SupabaseStore(Store):
    """
    Supabase-backed store.

    Expected tables (JSONB for nodes/edges/variables/input/output/metadata):
    - workflows(id, name, description, status, nodes, edges, variables,
      owner_id, version, created_at, updated_at)
    - runs(id, workflow_id, owner_id, status, input, output, error,
      metadata, created_at, updated_at), index on workflow_id
    - steps(id, run_id, owner_id, node_id, node_type, status, input, output,
      error, metadata, sequence bigserial, started_at, completed_at),
      index on run_id
    """

    def __init__(self, client=None):
        if client is None:
            from app.db.supabase import get_supabase
            client = get_supabase()
        self.client = client

    def _first(self, result) -> Optional[dict[str, Any]]:
        if result.data and len(result.data) > 0:
            return result.data[0]
        return None

    def create_workflow(self, workflow: Workflow) -> Workflow:
        result = self.client.table("workflows").insert(_to_row(workflow)).execute()
        row = self._first(result)
        if row is None:
            raise RuntimeError("Failed to create workflow")
        return Workflow.model_validate(row)

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        result = self.client.table("workflows").select("*").eq("id", workflow_id).execute()
        row = self._first(result)
        return Workflow.model_validate(row) if row else None

    def list_workflows(self, owner_id: str) -> list[Workflow]:
        result = self.client.table("workflows")\
            .select("*")\
            .eq("owner_id", owner_id)\
            .order("updated_at", desc=True)\
            .execute()
        return [Workflow.model_validate(row) for row in result.data or []]

    def update_workflow(self, workflow_id, changes, expected_version=None):
        existing = self.get_workflow(workflow_id)
        if existing is None:
            raise NotFound(f"Workflow not found: {workflow_id}")
        base_version = existing.version if expected_version is None else expected_version

        row = _changes_to_row(changes)
        row["version"] = base_version + 1
        row["updated_at"] = utc_now().isoformat()

        # Compare-and-set on version: a concurrent writer makes this match nothing.
        result = self.client.table("workflows")\
            .update(row)\
            .eq("id", workflow_id)\
            .eq("version", base_version)\
            .execute()
        updated = self._first(result)
        if updated is None:
            current = self.get_workflow(workflow_id)
            if current is None:
                raise NotFound(f"Workflow not found: {workflow_id}")
            raise ConflictError(
                f"Workflow {workflow_id} is at version {current.version}, "
                f"update was based on version {base_version}"
            )
        return Workflow.model_validate(updated)

    def delete_workflow(self, workflow_id: str) -> None:
        # runs/steps cascade through foreign keys
        self.client.table("workflows").delete().eq("id", workflow_id).execute()

    def create_run(self, run: Run) -> Run:
        result = self.client.table("runs").insert(_to_row(run)).execute()
        row = self._first(result)
        if row is None:
            raise RuntimeError("Failed to create run")
        return Run.model_validate(row)

    def get_run(self, run_id: str) -> Optional[Run]:
        result = self.client.table("runs").select("*").eq("id", run_id).execute()
        row = self._first(result)
        return Run.model_validate(row) if row else None

    def update_run(self, run_id: str, **changes: Any) -> Run:
        row = _changes_to_row(changes)
        row["updated_at"] = utc_now().isoformat()
        result = self.client.table("runs").update(row).eq("id", run_id).execute()
        updated = self._first(result)
        if updated is None:
            raise NotFound(f"Run not found: {run_id}")
        return Run.model_validate(updated)

    def list_runs(self, workflow_id: str, limit: Optional[int] = None) -> list[Run]:
        query = self.client.table("runs")\
            .select("*")\
            .eq("workflow_id", workflow_id)\
            .order("created_at", desc=True)
        if limit:
            query = query.limit(limit)
        result = query.execute()
        return [Run.model_validate(row) for row in result.data or []]

    def create_step(self, step: Step) -> Step:
        result = self.client.table("steps").insert(_to_row(step, exclude={"sequence"})).execute()
        row = self._first(result)
        if row is None:
            raise RuntimeError("Failed to create step")
        return Step.model_validate(row)

    def get_step(self, step_id: str) -> Optional[Step]:
        result = self.client.table("steps").select("*").eq("id", step_id).execute()
        row = self._first(result)
        return Step.model_validate(row) if row else None

    def update_step(self, step_id: str, **changes: Any) -> Step:
        result = self.client.table("steps").update(_changes_to_row(changes)).eq("id", step_id).execute()
        updated = self._first(result)
        if updated is None:
            raise NotFound(f"Step not found: {step_id}")
        return Step.model_validate(updated)

    def list_steps(self, run_id: str) -> list[Step]:
        result = self.client.table("steps")\
            .select("*")\
            .eq("run_id", run_id)\
            .order("sequence")\
            .execute()
        return [Step.model_validate(row) for row in result.data or []]


@lru_cache(maxsize=1)
def _default_store() -> Store:
    backend = Settings.store_backend()
    logger.info("Using %s store", backend)
    if backend == "supabase":
        return SupabaseStore()
    return MemoryStore()


def get_store() -> Store:
    """FastAPI dependency returning the process-wide store."""
    return _default_store()
