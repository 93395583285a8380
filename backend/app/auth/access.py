"""
Ownership checks for workflow, run and step records.

All reads and writes go through ``AccessContext.authorize`` so the owner
check lives in one place instead of being repeated per handler.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Protocol, TypeVar

from app.errors import AccessDenied, NotFound


RecordKind = Literal["Workflow", "Run", "Step"]


class OwnedRecord(Protocol):
    owner_id: str


R = TypeVar("R", bound=OwnedRecord)


@dataclass(frozen=True)
class AccessContext:
    """The caller identity, used as an opaque ownership key."""

    owner_id: str

    def authorize(self, record: Optional[R], kind: RecordKind, record_id: str = "") -> R:
        if record is None:
            raise NotFound(f"{kind} not found" + (f": {record_id}" if record_id else ""))
        if record.owner_id != self.owner_id:
            raise AccessDenied(f"Access denied to {kind.lower()}")
        return record
