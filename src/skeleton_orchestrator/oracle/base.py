"""
skeleton_orchestrator.oracle.base

Protocol for the text-generation oracle.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from skeleton_orchestrator.orchestrator.contracts import OracleRequest


@runtime_checkable
class GenerationOracle(Protocol):
    async def run_step(self, request: OracleRequest) -> Mapping[str, Any]:
        """
        Return the raw step output for `request.step_name`.
        Transport and decoding failures are raised as `OracleError`.
        """
        ...
