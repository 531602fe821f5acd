import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from llm.client import ChatCompletionResult
from models.base import MonthlyUsage
from models.entities import Project
from models.tracking import ScreenSample
from services.ai_judgment import (
    BUDGET_EXCEEDED_REASON,
    PARSE_FAILURE_REASON,
    AIJudgmentService,
)

NOW = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)

PROJECTS = [
    Project(id="P1", name="Acme API"),
    Project(id="P2", name="Beta Website"),
    Project(id="P3", name="Internal"),
]


def _sample(**fields) -> ScreenSample:
    return ScreenSample(timestamp=NOW, **fields)


def _completion(content) -> ChatCompletionResult:
    if not isinstance(content, str):
        content = json.dumps(content)
    return ChatCompletionResult(
        content=content, tokens_in=120, tokens_out=30, cost=0.0001, model="gpt-4o-mini"
    )


def _service(content=None, spent: float = 0.0, budget: float = 5.0):
    llm_client = Mock()
    llm_client.has_api_key.return_value = True
    llm_client.get_model.return_value = "gpt-4o-mini"
    llm_client.chat_completion = AsyncMock(return_value=_completion(content or {}))

    ledger = Mock()
    ledger.monthly_usage = AsyncMock(
        return_value=MonthlyUsage(month="2026-01", total_cost=spent)
    )
    return AIJudgmentService(llm_client, ledger, monthly_budget=budget), llm_client


@pytest.mark.asyncio
async def test_zero_budget_makes_no_calls():
    service, llm_client = _service(budget=0)
    previous = _sample(window_title="a.py", app_name="Code")
    current = _sample(window_title="b.py", app_name="Code")

    change = await service.detect_change(current, previous)
    project = await service.judge_project(current, PROJECTS)

    assert change.confidence == 0
    assert change.reasoning == BUDGET_EXCEEDED_REASON
    assert project.confidence == 0
    assert project.project_id is None
    llm_client.chat_completion.assert_not_called()


@pytest.mark.asyncio
async def test_budget_status():
    service, _ = _service(spent=4.0, budget=5.0)

    status = await service.get_budget_status()

    assert status.current_usage == 4.0
    assert status.remaining == pytest.approx(1.0)
    assert status.percent_used == pytest.approx(80.0)
    assert not status.is_over_budget
    assert await service.is_within_budget()

    service.set_monthly_budget(3.0)
    assert (await service.get_budget_status()).is_over_budget
    assert not await service.is_within_budget()


@pytest.mark.asyncio
async def test_detect_change_short_circuits_locally():
    service, llm_client = _service()
    code = _sample(window_title="main.py", app_name="Code")

    first = await service.detect_change(code, None)
    app_switch = await service.detect_change(_sample(app_name="Chrome"), code)
    same = await service.detect_change(code, code)
    host_switch = await service.detect_change(
        _sample(app_name="Chrome", url="https://b.test/x"),
        _sample(app_name="Chrome", url="https://a.test/x"),
    )

    assert first.has_change and first.confidence == 100
    assert app_switch.has_change
    assert not same.has_change
    assert host_switch.has_change
    llm_client.chat_completion.assert_not_called()


@pytest.mark.asyncio
async def test_detect_change_asks_the_model():
    service, llm_client = _service(
        {"hasChange": True, "confidence": 72, "reasoning": "different repository"}
    )

    result = await service.detect_change(
        _sample(window_title="beta/index.ts", app_name="Code"),
        _sample(window_title="acme/main.py", app_name="Code"),
    )

    assert result.has_change
    assert result.confidence == 72
    assert result.reasoning == "different repository"
    assert result.tokens_used == 150
    kwargs = llm_client.chat_completion.call_args.kwargs
    assert kwargs["request_type"] == "change_detection"
    assert kwargs["temperature"] == 0.1


@pytest.mark.asyncio
async def test_unparseable_response_degrades_to_zero_confidence():
    service, _ = _service("I think the user is probably still coding.")

    change = await service.detect_change(
        _sample(window_title="b.py", app_name="Code"),
        _sample(window_title="a.py", app_name="Code"),
    )
    project = await service.judge_project(_sample(app_name="Code"), PROJECTS)

    assert not change.has_change
    assert change.confidence == 0
    assert change.reasoning == PARSE_FAILURE_REASON
    assert project.confidence == 0
    assert project.reasoning == PARSE_FAILURE_REASON


@pytest.mark.asyncio
async def test_call_failure_is_reported_not_raised():
    service, llm_client = _service()
    llm_client.chat_completion.side_effect = ConnectionResetError("reset by peer")

    result = await service.judge_project(_sample(app_name="Code"), PROJECTS)

    assert result.confidence == 0
    assert "reset by peer" in result.reasoning


@pytest.mark.asyncio
async def test_judge_project_without_projects():
    service, llm_client = _service()

    result = await service.judge_project(_sample(app_name="Code"), [])

    assert result.project_id is None
    assert result.confidence == 100
    llm_client.chat_completion.assert_not_called()


@pytest.mark.asyncio
async def test_judge_project_validates_ids_and_alternatives():
    service, llm_client = _service(
        {
            "projectId": "P2",
            "confidence": 64,
            "reasoning": "beta website in browser",
            "isWork": True,
            "alternatives": [
                {"projectId": "P2", "score": 50},
                {"projectId": "P9", "score": 40},
                {"projectId": "P1", "score": 30},
                {"projectId": "P1", "score": 20},
            ],
        }
    )

    result = await service.judge_project(
        _sample(app_name="Chrome", url="https://beta.test"), PROJECTS, ocr_text="Beta landing page"
    )

    assert result.project_id == "P2"
    assert result.project_name == "Beta Website"
    assert result.confidence == 64
    assert [a.project_id for a in result.alternatives] == ["P1"]
    assert result.alternatives[0].score == 30
    assert result.is_work
    assert llm_client.chat_completion.call_args.kwargs["request_type"] == "project_judgment"


@pytest.mark.asyncio
async def test_unknown_project_id_is_discarded():
    service, _ = _service({"projectId": "P404", "confidence": 90, "reasoning": "guess"})

    result = await service.judge_project(_sample(app_name="Code"), PROJECTS)

    assert result.project_id is None
    assert result.project_name is None


@pytest.mark.asyncio
async def test_non_finite_confidence_falls_back_to_default():
    service, _ = _service('{"projectId": "P1", "confidence": Infinity, "reasoning": "acme"}')

    project = await service.judge_project(_sample(app_name="Code"), PROJECTS)

    assert project.project_id == "P1"
    assert project.confidence == 0

    service, _ = _service('{"hasChange": true, "confidence": 1e999, "reasoning": "moved"}')
    change = await service.detect_change(
        _sample(window_title="b.py", app_name="Code"),
        _sample(window_title="a.py", app_name="Code"),
    )

    assert change.has_change
    assert change.confidence == 50


@pytest.mark.asyncio
async def test_project_prompt_carries_truncated_screen_text():
    service, llm_client = _service({"projectId": "P1", "confidence": 80})
    screen_text = "Acme invoice " + "x" * 600

    await service.judge_project(_sample(app_name="Code"), PROJECTS, ocr_text=screen_text)

    messages = llm_client.chat_completion.call_args.args[0]
    user_prompt = messages[-1]["content"]
    screen_lines = [line for line in user_prompt.splitlines() if "Screen text:" in line]
    assert screen_lines == [f"- Screen text: {screen_text[:500]}"]
    assert "x" * 501 not in user_prompt


@pytest.mark.asyncio
async def test_project_prompt_falls_back_to_sample_text():
    service, llm_client = _service({"projectId": "P1", "confidence": 80})

    await service.judge_project(_sample(app_name="Code", ocr_text="Acme sprint board"), PROJECTS)

    user_prompt = llm_client.chat_completion.call_args.args[0][-1]["content"]
    assert "- Screen text: Acme sprint board" in user_prompt
