# tests/test_external_services.py

from __future__ import annotations

import json

import httpx
import pytest

from persona_tasks.tasks.external_services import ExternalServiceHandler
from persona_tasks.tasks.task_models import Classification, TaskType

from .fakes import FakeLLMClient, make_task


def _handler(settings, llm=None, handler=None) -> ExternalServiceHandler:
    http_client = None
    if handler is not None:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ExternalServiceHandler(llm or FakeLLMClient(), settings, http_client=http_client)


@pytest.mark.asyncio
async def test_image_generation_returns_url(settings) -> None:
    llm = FakeLLMClient(image_url="https://img.example.com/a.png?sig=1")

    result = await _handler(settings, llm).process(make_task())

    assert result.success is True
    assert result.data == "https://img.example.com/a.png?sig=1"
    assert llm.image_calls == [("Draw a neon dragon", "sk-test-key")]


@pytest.mark.asyncio
async def test_image_generation_requires_prompt(settings) -> None:
    task = make_task(
        classification=Classification(
            task_type=TaskType.API_CALL,
            service_name="image_generation",
            request_data={"prompt": "   "},
            api_key="sk-test-key",
        )
    )

    result = await _handler(settings).process(task)

    assert result.success is False
    assert "prompt" in (result.error or "")


@pytest.mark.asyncio
async def test_image_generation_uses_process_key_when_task_has_none(settings) -> None:
    settings.openai_api_key = "sk-process"
    llm = FakeLLMClient()
    task = make_task(
        classification=Classification(
            task_type=TaskType.API_CALL,
            service_name="image_generation",
            request_data={"prompt": "a red fox"},
        )
    )

    result = await _handler(settings, llm).process(task)

    assert result.success is True
    assert llm.image_calls[0][1] == "sk-process"


@pytest.mark.asyncio
async def test_image_generation_without_any_key_fails(settings) -> None:
    task = make_task(
        classification=Classification(
            task_type=TaskType.API_CALL,
            service_name="image_generation",
            request_data={"prompt": "a red fox"},
        )
    )

    result = await _handler(settings).process(task)

    assert result.success is False
    assert "API key" in (result.error or "")


@pytest.mark.asyncio
async def test_generic_api_call_returns_json_body(settings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"temp": 21})

    task = make_task(
        command="fetch weather",
        classification=Classification(
            task_type=TaskType.API_CALL,
            service_name="https://weather.example.test/v1/now",
            request_data={"method": "post", "body": {"city": "Berlin"}, "headers": {"X-Key": "k"}},
        ),
    )

    result = await _handler(settings, handler=handler).process(task)

    assert result.success is True
    assert result.data == {"temp": 21}
    assert seen[0].method == "POST"
    assert seen[0].headers["X-Key"] == "k"
    assert json.loads(seen[0].content) == {"city": "Berlin"}


@pytest.mark.asyncio
async def test_generic_api_call_non_2xx_is_failure(settings) -> None:
    task = make_task(
        classification=Classification(
            task_type=TaskType.API_CALL,
            service_name="third_party_api",
            request_data={"url": "https://api.example.test/x"},
        )
    )

    result = await _handler(settings, handler=lambda _req: httpx.Response(503, text="down")).process(task)

    assert result.success is False
    assert "503" in (result.error or "")


@pytest.mark.asyncio
async def test_generic_api_call_without_target_fails(settings) -> None:
    task = make_task(
        classification=Classification(
            task_type=TaskType.API_CALL,
            service_name="third_party_api",
            request_data={"command": "Fetch weather data"},
        )
    )

    result = await _handler(settings).process(task)

    assert result.success is False
    assert "No request target" in (result.error or "")


@pytest.mark.asyncio
async def test_solana_stub_and_unknown_chain(settings) -> None:
    solana = make_task(
        classification=Classification(task_type=TaskType.BLOCKCHAIN_TX, service_name="solana", request_data={})
    )
    other = make_task(
        task_id="t2",
        classification=Classification(task_type=TaskType.BLOCKCHAIN_TX, service_name="dogechain", request_data={}),
    )
    handler = _handler(settings)

    ok = await handler.process(solana)
    bad = await handler.process(other)

    assert ok.success is True
    assert ok.data == {"txId": "mock_transaction_id"}
    assert bad.success is False
    assert "Unsupported blockchain service" in (bad.error or "")


@pytest.mark.asyncio
async def test_mcp_action_posts_action_and_params(settings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    task = make_task(
        classification=Classification(
            task_type=TaskType.MCP_ACTION,
            service_name="mcp_server",
            request_data={"action": "sync", "params": {"full": True}},
        )
    )

    result = await _handler(settings, handler=handler).process(task)

    assert result.success is True
    assert str(seen[0].url) == settings.mcp_endpoint
    assert json.loads(seen[0].content) == {"action": "sync", "params": {"full": True}}


@pytest.mark.asyncio
async def test_mcp_action_non_200_is_failure(settings) -> None:
    task = make_task(
        classification=Classification(
            task_type=TaskType.MCP_ACTION,
            service_name="mcp_server",
            request_data={"command": "Run MCP protocol"},
        )
    )

    result = await _handler(settings, handler=lambda _req: httpx.Response(202)).process(task)

    assert result.success is False
    assert "HTTP 202" in (result.error or "")


@pytest.mark.asyncio
async def test_chat_task_is_unsupported(settings) -> None:
    result = await _handler(settings).process(make_task(classification=Classification.chat()))
    assert result.success is False
    assert (result.error or "").startswith("Unsupported task type")
