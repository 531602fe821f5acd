from datetime import datetime
from unittest.mock import AsyncMock, Mock

import pytest

from conftest import FakeWindowMonitor
from agents.tracking_engine import TrackingEngine
from core.settings import DetectorSettings, TrackingSettings
from models.entities import RuleType
from models.tracking import (
    ConfirmationAction,
    ConfirmationResponse,
    ProjectAlternative,
    ProjectJudgmentResult,
)
from processing.change_detector import ChangeDetector
from services.notification import (
    CONFIRMATION_NEEDED,
    ENTRY_CREATED,
    NotificationService,
    TRACKING_STOPPED,
)
from services.password_detection import PasswordDetector
from services.rule_matcher import RuleMatcher

CODE = {"app_name": "Code", "window_title": "main.py - acme"}
CHROME = {"app_name": "Chrome", "window_title": "GitHub", "url": "https://github.com"}


def _build(
    db,
    clock,
    scheduler,
    samples,
    ai_service=None,
    screenshot_source=None,
    network_monitor=None,
    **tracking,
):
    options = TrackingSettings(metadata_interval=3600, **tracking)
    rule_matcher = RuleMatcher(db.rules, db.projects)
    notifier = NotificationService(clock=clock)
    events = []
    notifier.subscribe(lambda event, payload: events.append((event, payload)))

    engine = TrackingEngine(
        project_source=db.projects,
        entry_store=db.entries,
        sample_source=FakeWindowMonitor(clock, samples),
        change_detector=ChangeDetector(
            DetectorSettings(enable_ocr=False, enable_image_hash=False),
            rule_matcher=rule_matcher,
            ai_service=ai_service,
        ),
        rule_matcher=rule_matcher,
        scheduler=scheduler,
        ai_service=ai_service,
        screenshot_source=screenshot_source,
        password_detector=PasswordDetector(),
        network_monitor=network_monitor,
        notifier=notifier,
        clock=clock,
        options=options,
    )
    return engine, events


async def _seed_projects(db):
    await db.projects.create("Acme", project_id="P1")
    await db.projects.create("Beta", project_id="P2")
    await db.rules.create("P1", RuleType.APP_NAME, "Code")


@pytest.mark.asyncio
async def test_start_then_stop_leaves_no_entries(db, clock, scheduler):
    engine, events = _build(db, clock, scheduler, [CODE])

    assert await engine.start()
    assert not await engine.start()
    assert engine.current_entry is not None

    clock.advance(10)
    final = await engine.stop()

    assert final is None
    assert db.get_table_counts()["entries"] == 0
    assert not engine.is_running
    assert scheduler.active() == []
    assert events[-1][0] == TRACKING_STOPPED


@pytest.mark.asyncio
async def test_stop_closes_long_entry(db, clock, scheduler):
    engine, _ = _build(db, clock, scheduler, [CODE])
    await engine.start()
    seed_id = engine.current_entry.id

    clock.advance(120)
    final = await engine.stop()

    assert final.id == seed_id
    assert final.end_time == clock.now()
    assert (await db.entries.find_by_id(seed_id)).end_time is not None


@pytest.mark.asyncio
async def test_code_code_chrome_sequence(db, clock, scheduler):
    await _seed_projects(db)
    engine, events = _build(db, clock, scheduler, [CODE, CODE, CHROME])

    await engine.start()
    seed_id = engine.current_entry.id

    # Tick 1: first observation, rule match
    await scheduler.advance(0)
    p1_entry = engine.current_entry
    assert engine.current_project_id == "P1"
    assert engine.current_project_name == "Acme"
    assert p1_entry.confidence == 100
    assert await db.entries.find_by_id(seed_id) is None
    assert engine.pending_confirmation is None

    # Tick 2: nothing changed
    await scheduler.advance(60)
    assert engine.current_entry.id == p1_entry.id

    # Tick 3: app switch, no rule, no credential -> unassigned
    await scheduler.advance(60)
    assert engine.current_entry.id != p1_entry.id
    assert engine.current_project_id is None
    assert engine.current_entry.confidence == 0

    closed = await db.entries.find_by_id(p1_entry.id)
    assert closed.project_id == "P1"
    assert closed.end_time is not None

    created = [payload["id"] for event, payload in events if event == ENTRY_CREATED]
    assert created == [seed_id, p1_entry.id, engine.current_entry.id]

    request = engine.pending_confirmation
    assert request.entry_id == engine.current_entry.id
    assert request.suggested_project.name == "Unassigned"
    assert [a.project_id for a in request.alternatives] == ["P1", "P2"]
    assert any(event == CONFIRMATION_NEEDED for event, _ in events)


@pytest.mark.asyncio
async def test_ai_fallback_and_confirmation_alternatives(db, clock, scheduler):
    await _seed_projects(db)
    await db.projects.create("Gamma", project_id="P3")
    ai_service = Mock()
    ai_service.has_credential.return_value = True
    ai_service.detect_change = AsyncMock()
    ai_service.judge_project = AsyncMock(
        return_value=ProjectJudgmentResult(
            project_id="P2",
            project_name="Beta",
            confidence=70,
            reasoning="beta repository in browser",
            alternatives=[ProjectAlternative(project_id="P3", project_name="Gamma", score=20)],
        )
    )
    engine, _ = _build(db, clock, scheduler, [CHROME], ai_service=ai_service)

    await engine.start()
    await scheduler.advance(0)

    assert engine.current_project_id == "P2"
    assert engine.current_entry.confidence == 70
    assert engine.current_entry.reasoning == "beta repository in browser"
    alternatives = engine.pending_confirmation.alternatives
    assert [a.project_id for a in alternatives] == ["P3", "P1"]
    assert alternatives[1].score == 0
    ai_service.judge_project.assert_awaited_once()


@pytest.mark.asyncio
async def test_offline_skips_ai(db, clock, scheduler):
    await _seed_projects(db)
    ai_service = Mock()
    ai_service.has_credential.return_value = True
    ai_service.judge_project = AsyncMock()
    network_monitor = Mock(is_online=False)
    engine, _ = _build(
        db, clock, scheduler, [CHROME], ai_service=ai_service, network_monitor=network_monitor
    )

    await engine.start()
    await scheduler.advance(0)

    assert engine.current_project_id is None
    ai_service.judge_project.assert_not_called()


@pytest.mark.asyncio
async def test_same_project_refreshes_in_place(db, clock, scheduler):
    await _seed_projects(db)
    engine, _ = _build(
        db, clock, scheduler, [CODE, {"app_name": "Code", "window_title": "util.py - acme"}]
    )

    await engine.start()
    await scheduler.advance(0)
    entry_id = engine.current_entry.id

    await scheduler.advance(60)

    assert engine.current_entry.id == entry_id
    assert engine.current_entry.end_time is None
    assert engine.current_entry.reasoning.startswith("Rule match")


@pytest.mark.asyncio
async def test_password_screen_skips_screenshot(db, clock, scheduler):
    screenshot_source = Mock()
    screenshot_source.capture = AsyncMock(return_value=b"png")
    login = {"app_name": "Chrome", "window_title": "Sign in - Google Accounts",
             "url": "https://accounts.google.com/signin"}
    engine, _ = _build(db, clock, scheduler, [login], screenshot_source=screenshot_source)

    await engine.start()
    await scheduler.advance(0)

    screenshot_source.capture.assert_not_called()
    assert engine.last_sample.window_title == "Sign in - Google Accounts"
    assert engine.change_detector.previous_sample.url == "https://accounts.google.com/signin"


@pytest.mark.asyncio
async def test_failed_tick_is_skipped(db, clock, scheduler):
    engine, _ = _build(db, clock, scheduler, [CODE])
    engine.sample_source.get_active_window = AsyncMock(side_effect=OSError("display gone"))

    await engine.start()
    await scheduler.advance(0)

    assert engine.is_running
    assert engine.stats["failed_ticks"] == 1
    assert len(scheduler.active()) == 2


@pytest.mark.asyncio
async def test_metadata_loop_detects_quick_change(db, clock, scheduler):
    await _seed_projects(db)
    engine, _ = _build(db, clock, scheduler, [CODE, CHROME])
    engine.update_config(metadata_interval=5)

    await engine.start()
    await scheduler.advance(0)
    assert engine.current_project_id == "P1"

    await scheduler.advance(5)

    assert engine.stats["metadata_ticks"] == 1
    assert engine.current_project_id is None


@pytest.mark.asyncio
async def test_pause_resume_and_status(db, clock, scheduler):
    engine, _ = _build(db, clock, scheduler, [CODE])
    await engine.start()
    await scheduler.advance(0)
    entry_id = engine.current_entry.id

    assert engine.pause()
    assert not engine.pause()
    assert scheduler.active() == []
    assert engine.get_status().is_paused

    clock.advance(30)
    assert engine.resume()
    assert len(scheduler.active()) == 2

    status = engine.get_status()
    assert status.is_running and not status.is_paused
    assert status.elapsed_seconds == 30
    assert status.current_entry_id == entry_id


@pytest.mark.asyncio
async def test_update_config_rejects_unknown_option(db, clock, scheduler):
    engine, _ = _build(db, clock, scheduler, [CODE])
    with pytest.raises(ValueError):
        engine.update_config(frame_rate=30)


@pytest.mark.asyncio
async def test_confirmation_responses(db, clock, scheduler):
    await _seed_projects(db)
    engine, _ = _build(db, clock, scheduler, [CODE, CHROME])
    await engine.start()
    await scheduler.advance(0)
    await scheduler.advance(60)
    entry_id = engine.current_entry.id
    assert engine.pending_confirmation.entry_id == entry_id

    assert await engine.handle_confirmation_response(
        ConfirmationResponse(entry_id=entry_id, action=ConfirmationAction.CONFIRM)
    )
    assert (await db.entries.find_by_id(entry_id)).confidence == 100
    assert engine.pending_confirmation is None

    assert await engine.handle_confirmation_response(
        ConfirmationResponse(
            entry_id=entry_id, action=ConfirmationAction.CHANGE, new_project_id="P2"
        )
    )
    assert engine.current_project_id == "P2"
    assert engine.current_project_name == "Beta"
    assert (await db.entries.find_by_id(entry_id)).project_id == "P2"

    clock.advance(300)
    split_at = clock.now()
    clock.advance(60)
    assert await engine.handle_confirmation_response(
        ConfirmationResponse(
            entry_id=entry_id, action=ConfirmationAction.SPLIT, split_time=split_at
        )
    )
    before = await db.entries.find_by_id(entry_id)
    assert before.end_time == split_at
    assert engine.current_entry.id != entry_id
    assert engine.current_entry.start_time == split_at
    assert engine.current_entry.project_id == "P2"

    assert not await engine.handle_confirmation_response(
        ConfirmationResponse(entry_id=entry_id, action=ConfirmationAction.CHANGE)
    )


@pytest.mark.asyncio
async def test_split_with_naive_time_clears_pending_confirmation(db, clock, scheduler):
    await _seed_projects(db)
    engine, _ = _build(db, clock, scheduler, [CODE, CHROME])
    await engine.start()
    await scheduler.advance(0)
    await scheduler.advance(60)
    entry_id = engine.current_entry.id
    assert engine.pending_confirmation is not None

    # Two days after the entry started, whatever the local offset
    naive = datetime(2026, 1, 17, 9, 0)
    assert await engine.handle_confirmation_response(
        ConfirmationResponse(entry_id=entry_id, action=ConfirmationAction.SPLIT, split_time=naive)
    )

    assert engine.pending_confirmation is None
    assert (await db.entries.find_by_id(entry_id)).end_time == naive.astimezone()
    assert engine.current_entry.start_time == naive.astimezone()


@pytest.mark.asyncio
async def test_screen_text_reaches_project_judgment(db, clock, scheduler):
    await db.projects.create("Acme", project_id="P1")
    ai_service = Mock()
    ai_service.has_credential.return_value = True
    ai_service.judge_project = AsyncMock(
        return_value=ProjectJudgmentResult(confidence=0, reasoning="unsure")
    )
    ocr_engine = Mock()
    ocr_engine.recognize = AsyncMock(
        side_effect=["GitHub pull requests", "Acme invoice sprint board"]
    )
    screenshot_source = Mock()
    screenshot_source.capture = AsyncMock(return_value=b"png")
    rule_matcher = RuleMatcher(db.rules, db.projects)

    engine = TrackingEngine(
        project_source=db.projects,
        entry_store=db.entries,
        sample_source=FakeWindowMonitor(clock, [CHROME]),
        change_detector=ChangeDetector(
            DetectorSettings(enable_image_hash=False),
            ocr_engine=ocr_engine,
            rule_matcher=rule_matcher,
            ai_service=ai_service,
        ),
        rule_matcher=rule_matcher,
        scheduler=scheduler,
        ai_service=ai_service,
        screenshot_source=screenshot_source,
        clock=clock,
        options=TrackingSettings(metadata_interval=3600),
    )

    await engine.start()
    await scheduler.advance(0)
    await scheduler.advance(60)
    await scheduler.advance(60)

    assert ai_service.judge_project.await_count == 2
    first, last = ai_service.judge_project.await_args_list
    assert first.kwargs["ocr_text"] is None
    assert last.kwargs["ocr_text"] == "Acme invoice sprint board"
    assert last.args[0].ocr_text == "Acme invoice sprint board"
