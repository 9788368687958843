"""
skeleton_orchestrator.oracle.chat_completions

HTTP client boundary used by the orchestrator to call the generation oracle.

Responsibilities:
- Call an OpenAI-compatible `/chat/completions` endpoint (OpenRouter by default) with bearer auth.
- Ask for a JSON object and decode it, tolerating Markdown code fences around the payload.
- Surface every transport/decoding failure as `OracleError`.
"""

from __future__ import annotations

import json
import re
from typing import Any

import httpx

from skeleton_orchestrator.observability.logging import get_logger
from skeleton_orchestrator.orchestrator.contracts import OracleRequest, StepName
from skeleton_orchestrator.orchestrator.errors import OracleError
from skeleton_orchestrator.settings import Settings

log = get_logger(__name__)

_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")

_STEP_INSTRUCTIONS = {
    StepName.interpret: "Interpret the latest user message and update the session state.",
    StepName.gate_check: "Decide whether the session state is ready for skeleton generation.",
    StepName.skeleton_generate: "Generate the document skeleton from the collected facts.",
    StepName.skeleton_review_plan: "Plan review questions for the generated skeleton.",
    StepName.skeleton_review_apply: "Refine the skeleton using the submitted review answers.",
}

_OUTPUT_CONTRACT = (
    "Reply with one JSON object: "
    '{"output_id", "step", "patch": {"format": "pointer"|"merge", "ops"}, '
    '"issue_updates", "next_action", "rationale", "safety"}. '
    'The "step" field must equal the requested step name.'
)


class ChatCompletionsOracle:
    def __init__(self, *, settings: Settings, http: httpx.AsyncClient) -> None:
        self._settings = settings
        self._http = http

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._settings.oracle_api_key:
            headers["Authorization"] = f"Bearer {self._settings.oracle_api_key}"
        return headers

    async def run_step(self, request: OracleRequest) -> dict[str, Any]:
        step = StepName(request.step_name)
        body = {
            "model": self._settings.oracle_model,
            "temperature": self._settings.oracle_temperature,
            "max_tokens": self._settings.oracle_max_tokens,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": f"{_STEP_INSTRUCTIONS[step]} {_OUTPUT_CONTRACT}"},
                {"role": "user", "content": f"STEP: {step.value}\n\n{request.rendered_context}"},
            ],
        }

        try:
            r = await self._http.post(
                f"{self._settings.oracle_base_url.rstrip('/')}/chat/completions",
                headers=self._headers(),
                json=body,
                timeout=self._settings.oracle_timeout_s,
            )
            r.raise_for_status()
            content = r.json()["choices"][0]["message"]["content"]
        except httpx.HTTPStatusError as e:
            raise OracleError(
                f"oracle returned HTTP {e.response.status_code}", step=step.value
            ) from e
        except httpx.HTTPError as e:
            raise OracleError(f"oracle request failed: {e}", step=step.value) from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise OracleError("oracle response has no message content", step=step.value) from e

        log.debug("oracle_response", step=step.value, chars=len(content or ""))
        return decode_step_output(content, step=step.value)


def decode_step_output(content: str | None, *, step: str | None = None) -> dict[str, Any]:
    if not content or not content.strip():
        raise OracleError("oracle returned an empty message", step=step)
    text = _FENCE.sub("", content.strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise OracleError(f"oracle returned invalid JSON: {e.msg}", step=step) from e
    if not isinstance(data, dict):
        raise OracleError("oracle returned JSON that is not an object", step=step)
    return data


# --- Module Notes -----------------------------------------------------------
# No retries here: a failed call surfaces as `halt_error` and the caller resubmits the
# triggering action.
