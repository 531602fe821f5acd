from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest

from llm.client import LLMClient, LLMNotConfiguredError, calculate_cost
from llm.request_queue import RequestQueue


def _response(content: str, prompt_tokens: int = 1000, completion_tokens: int = 500):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content), finish_reason="stop")],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def _client(clock, sdk, ledger=None, api_key="sk-test"):
    factory = Mock(return_value=sdk)
    client = LLMClient(
        api_key,
        request_queue=RequestQueue(clock=clock),
        usage_ledger=ledger,
        client_factory=factory,
    )
    return client, factory


def test_calculate_cost():
    assert calculate_cost("gpt-4o-mini", 1_000_000, 1_000_000) == pytest.approx(0.75)
    assert calculate_cost("gpt-4o", 1_000_000, 0) == pytest.approx(2.5)
    assert calculate_cost("unknown-model", 1_000_000, 0) == pytest.approx(0.15)


@pytest.mark.asyncio
async def test_chat_completion_records_usage(clock):
    sdk = Mock()
    sdk.chat.completions.create = AsyncMock(return_value=_response('{"hasChange": false}'))
    ledger = Mock()
    ledger.record = AsyncMock()
    client, factory = _client(clock, sdk, ledger)

    result = await client.chat_completion(
        [{"role": "user", "content": "hi"}], request_type="change_detection"
    )

    assert result.content == '{"hasChange": false}'
    assert result.tokens_used == 1500
    assert result.cost == pytest.approx(calculate_cost("gpt-4o-mini", 1000, 500))
    assert result.finish_reason == "stop"
    ledger.record.assert_awaited_once_with(
        "gpt-4o-mini", 1000, 500, result.cost, "change_detection"
    )
    assert factory.call_args.kwargs["max_retries"] == 0


@pytest.mark.asyncio
async def test_ledger_failure_does_not_fail_the_call(clock):
    sdk = Mock()
    sdk.chat.completions.create = AsyncMock(return_value=_response("ok"))
    ledger = Mock()
    ledger.record = AsyncMock(side_effect=RuntimeError("disk full"))
    client, _ = _client(clock, sdk, ledger)

    result = await client.chat_completion([{"role": "user", "content": "hi"}])

    assert result.content == "ok"


@pytest.mark.asyncio
async def test_requires_api_key(clock):
    client, _ = _client(clock, Mock(), api_key="")

    assert not client.has_api_key()
    with pytest.raises(LLMNotConfiguredError):
        await client.chat_completion([{"role": "user", "content": "hi"}])

    client.set_api_key("sk-new")
    assert client.has_api_key()
    client.clear_api_key()
    assert not client.has_api_key()


@pytest.mark.asyncio
async def test_models_per_request_type(clock):
    client, _ = _client(clock, Mock())
    client.set_models(project_judgment="gpt-4o", change_detection="")

    assert client.get_model("project_judgment") == "gpt-4o"
    assert client.get_model("change_detection") == "gpt-4o-mini"
    assert "gpt-5-nano" in client.get_available_models()


@pytest.mark.asyncio
async def test_api_key_check(clock):
    sdk = Mock()
    sdk.models.list = AsyncMock(return_value=[])
    client, _ = _client(clock, sdk)
    assert await client.test_api_key() == {"valid": True, "error": None}

    unauthorized = Exception("unauthorized")
    unauthorized.status_code = 401
    sdk.models.list = AsyncMock(side_effect=unauthorized)
    assert await client.test_api_key() == {"valid": False, "error": "Invalid API key"}
