"""
skeleton_orchestrator.orchestrator.errors

Domain-specific exceptions used by the orchestration core.

Responsibilities:
- consistency errors raised by the patch engine, with the failing operation attached;
- oracle transport/parse/contract failures;
- lookup and stage-precondition failures surfaced to the transport layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(eq=False)
class PatchError(Exception):
    """
    A patch could not be applied. The whole apply call is aborted; no partial state escapes.
    """

    message: str
    op_index: int | None = None
    op: dict[str, Any] | None = None

    def __str__(self) -> str:
        if self.op_index is None:
            return self.message
        return f"op #{self.op_index} {self.op!r}: {self.message}"


@dataclass(eq=False)
class ProtectedPathError(PatchError):
    """Raised for rewrites of append-only or frozen parts of the session state."""


@dataclass(eq=False)
class StateSchemaError(PatchError):
    """The patched document no longer validates against the typed session model."""

    errors: list[dict[str, Any]] = field(default_factory=list)


@dataclass(eq=False)
class OracleError(Exception):
    message: str
    step: str | None = None

    def __str__(self) -> str:
        if self.step:
            return f"{self.step}: {self.message}"
        return self.message


@dataclass(eq=False)
class StepMismatchError(OracleError):
    expected: str = ""
    actual: str | None = None


@dataclass(eq=False)
class SessionNotFoundError(Exception):
    session_id: str

    def __str__(self) -> str:
        return f"Session not found: {self.session_id}"


@dataclass(eq=False)
class StagePreconditionError(Exception):
    operation: str
    message: str

    def __str__(self) -> str:
        return f"{self.operation}: {self.message}"


# --- Module Notes -----------------------------------------------------------
# OracleError is converted into a `halt_error` next action by the orchestrator; PatchError
# always propagates so a failed step never persists a half-applied state.
