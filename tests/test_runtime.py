import json
from unittest.mock import Mock

import pytest

from core.settings import Settings, TrackingSettings
from system.runtime import build_runtime, main

from conftest import FakeWindowMonitor


def test_validate_rule_rejects_bad_patterns(capsys):
    assert main(["validate-rule", "keyword", "[]"]) == 1
    output = json.loads(capsys.readouterr().out)
    assert output == {"valid": False, "error": "Enter at least one keyword"}

    assert main(["validate-rule", "window_title", "(a+)+$"]) == 1


def test_validate_rule_against_sample(capsys):
    assert main(["validate-rule", "app_name", "Code", "--app", "Visual Studio Code"]) == 0
    output = json.loads(capsys.readouterr().out)

    assert output["valid"] is True
    assert output["match"]["matched"] is True


def test_unknown_rule_type_is_a_usage_error():
    with pytest.raises(SystemExit):
        main(["validate-rule", "regex", "x"])


@pytest.mark.asyncio
async def test_build_runtime_wires_engine(db, clock, scheduler):
    settings = Settings(tracking=TrackingSettings(capture_screenshots=False))
    source = FakeWindowMonitor(clock, [{"app_name": "Code", "window_title": "main.py"}])

    runtime = build_runtime(
        settings,
        db=db,
        clock=clock,
        scheduler=scheduler,
        sample_source=source,
        client_factory=Mock(),
    )

    assert runtime.screenshot_source is None
    assert runtime.engine.sample_source is source
    assert not runtime.llm_client.has_api_key()

    assert await runtime.engine.start()
    await scheduler.advance(0)
    assert source.calls >= 1
    assert runtime.engine.get_status().is_running

    await runtime.engine.stop()
    assert not runtime.engine.is_running
    assert await db.entries.find_current() is None
