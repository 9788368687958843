from __future__ import annotations

import json

import httpx
import pytest

from skeleton_orchestrator.oracle.chat_completions import ChatCompletionsOracle, decode_step_output
from skeleton_orchestrator.orchestrator.contracts import OracleRequest, StepName
from skeleton_orchestrator.orchestrator.errors import OracleError
from skeleton_orchestrator.settings import Settings


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _oracle(handler) -> tuple[ChatCompletionsOracle, httpx.AsyncClient]:
    settings = Settings(
        env="test",
        oracle_base_url="https://oracle.test/api/v1/",
        oracle_api_key="secret",
        oracle_model="test-model",
    )
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChatCompletionsOracle(settings=settings, http=http), http


REQUEST = OracleRequest(step_name=StepName.gate_check, rendered_context='{"state": {}}')


@pytest.mark.asyncio
async def test_run_step_posts_chat_completion_and_decodes_json() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_completion('```json\n{"step": "GATE_CHECK"}\n```'))

    oracle, http = _oracle(handler)
    async with http:
        out = await oracle.run_step(REQUEST)

    assert out == {"step": "GATE_CHECK"}
    request = seen[0]
    assert str(request.url) == "https://oracle.test/api/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert body["model"] == "test-model"
    assert body["response_format"] == {"type": "json_object"}
    assert body["messages"][1]["content"].startswith("STEP: GATE_CHECK")


@pytest.mark.asyncio
async def test_http_error_becomes_oracle_error() -> None:
    oracle, http = _oracle(lambda request: httpx.Response(502, json={"error": "bad gateway"}))

    async with http:
        with pytest.raises(OracleError) as excinfo:
            await oracle.run_step(REQUEST)

    assert "502" in str(excinfo.value)
    assert excinfo.value.step == "GATE_CHECK"


@pytest.mark.asyncio
async def test_transport_error_becomes_oracle_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    oracle, http = _oracle(handler)
    async with http:
        with pytest.raises(OracleError):
            await oracle.run_step(REQUEST)


@pytest.mark.asyncio
async def test_response_without_content_is_an_oracle_error() -> None:
    oracle, http = _oracle(lambda request: httpx.Response(200, json={"choices": []}))

    async with http:
        with pytest.raises(OracleError):
            await oracle.run_step(REQUEST)


@pytest.mark.parametrize("content", [None, "   ", "not json", "[1, 2]"])
def test_decode_rejects_non_objects(content: str | None) -> None:
    with pytest.raises(OracleError):
        decode_step_output(content, step="INTERPRET")


def test_decode_strips_bare_fences() -> None:
    assert decode_step_output('```\n{"a": 1}\n```') == {"a": 1}
