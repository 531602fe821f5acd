"""Backend runtime control utility

Wires every collaborator explicitly, and provides startup, stop and status
logic shared by the CLI entry point.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from typing import Any, Callable, Optional, Sequence

from agents.tracking_engine import TrackingEngine
from config.loader import get_config
from core.db import DatabaseManager, get_db, switch_database
from core.logger import get_logger, setup_logging
from core.scheduler import AsyncioScheduler, Clock, Scheduler, SystemClock
from core.settings import Settings, init_settings
from llm.client import LLMClient
from llm.request_queue import RequestQueue
from models.entities import RuleType
from models.tracking import ScreenSample
from processing.change_detector import ChangeDetector
from processing.ocr import OCREngine
from services.ai_judgment import AIJudgmentService
from services.network_monitor import NetworkMonitor
from services.notification import NotificationService
from services.password_detection import PasswordDetector
from services.rule_matcher import RuleMatcher

logger = get_logger(__name__)


class Runtime:
    """Container for one fully wired tracking stack"""

    def __init__(
        self,
        *,
        settings: Settings,
        db: DatabaseManager,
        clock: Clock,
        scheduler: Scheduler,
        request_queue: RequestQueue,
        llm_client: LLMClient,
        ai_service: AIJudgmentService,
        rule_matcher: RuleMatcher,
        change_detector: ChangeDetector,
        password_detector: PasswordDetector,
        network_monitor: NetworkMonitor,
        notifier: NotificationService,
        sample_source: Any,
        screenshot_source: Optional[Any],
        engine: TrackingEngine,
    ):
        self.settings = settings
        self.db = db
        self.clock = clock
        self.scheduler = scheduler
        self.request_queue = request_queue
        self.llm_client = llm_client
        self.ai_service = ai_service
        self.rule_matcher = rule_matcher
        self.change_detector = change_detector
        self.password_detector = password_detector
        self.network_monitor = network_monitor
        self.notifier = notifier
        self.sample_source = sample_source
        self.screenshot_source = screenshot_source
        self.engine = engine


def build_runtime(
    settings: Settings,
    *,
    db: Optional[DatabaseManager] = None,
    clock: Optional[Clock] = None,
    scheduler: Optional[Scheduler] = None,
    sample_source: Optional[Any] = None,
    screenshot_source: Optional[Any] = None,
    client_factory: Optional[Callable[..., Any]] = None,
) -> Runtime:
    """
    Construct every collaborator from settings

    Sample and screenshot sources default to the platform implementations;
    tests pass doubles instead.
    """
    db = db or get_db()
    clock = clock or SystemClock()
    scheduler = scheduler or AsyncioScheduler(clock)

    request_queue = RequestQueue(settings.ai.max_requests_per_minute, clock=clock)
    llm_client = LLMClient(
        settings.ai.api_key,
        request_queue=request_queue,
        usage_ledger=db.ai_usage,
        base_url=settings.ai.base_url,
        organization=settings.ai.organization,
        models={
            "change_detection": settings.ai.change_detection_model,
            "project_judgment": settings.ai.project_judgment_model,
        },
        client_factory=client_factory,
    )
    ai_service = AIJudgmentService(llm_client, db.ai_usage, settings.ai.monthly_budget)
    rule_matcher = RuleMatcher(db.rules, db.projects)

    ocr_engine = OCREngine(languages=settings.detector.ocr_languages)
    change_detector = ChangeDetector(
        settings.detector,
        ocr_engine=ocr_engine,
        rule_matcher=rule_matcher,
        ai_service=ai_service,
    )

    password_detector = PasswordDetector(
        exclude_keywords=settings.privacy.exclude_keywords,
        enabled=settings.privacy.password_detection,
    )
    network_monitor = NetworkMonitor(
        host=settings.network.probe_host,
        port=settings.network.probe_port,
        clock=clock,
    )
    notifier = NotificationService(
        max_alerts_per_hour=settings.notifications.max_alerts_per_hour,
        clock=clock,
    )

    if sample_source is None:
        from perception import WindowMonitor

        sample_source = WindowMonitor(clock=clock)
    if screenshot_source is None and settings.tracking.capture_screenshots:
        from perception import ScreenCapture

        screenshot_source = ScreenCapture()

    engine = TrackingEngine(
        project_source=db.projects,
        entry_store=db.entries,
        sample_source=sample_source,
        change_detector=change_detector,
        rule_matcher=rule_matcher,
        scheduler=scheduler,
        ai_service=ai_service,
        screenshot_source=screenshot_source,
        password_detector=password_detector,
        network_monitor=network_monitor,
        notifier=notifier,
        clock=clock,
        options=settings.tracking,
    )

    logger.debug("Runtime components constructed")
    return Runtime(
        settings=settings,
        db=db,
        clock=clock,
        scheduler=scheduler,
        request_queue=request_queue,
        llm_client=llm_client,
        ai_service=ai_service,
        rule_matcher=rule_matcher,
        change_detector=change_detector,
        password_detector=password_detector,
        network_monitor=network_monitor,
        notifier=notifier,
        sample_source=sample_source,
        screenshot_source=screenshot_source,
        engine=engine,
    )


_runtime: Optional[Runtime] = None


def _load_settings(config_file: Optional[str] = None) -> Settings:
    config_loader = get_config(config_file)
    config = config_loader.load()
    logger.debug(f"✓ Config file: {config_loader.config_file}")
    return init_settings(config)


async def start_runtime(config_file: Optional[str] = None) -> Runtime:
    """Start tracking, returns the existing runtime if already running."""
    global _runtime

    if _runtime is not None and _runtime.engine.is_running:
        logger.debug("Tracking engine is already running, no need to start again")
        return _runtime

    settings = _load_settings(config_file)

    # Follow database.path from the loaded config
    if not switch_database(str(settings.get_database_path())):
        logger.warning("✗ Failed to switch to configured database path, using default")
    db = get_db()

    _runtime = build_runtime(settings, db=db)

    if not _runtime.llm_client.has_api_key():
        logger.warning("No OpenAI API key configured, running on rule matching only")

    await _runtime.network_monitor.check_connection()
    _runtime.network_monitor.start_monitoring(
        _runtime.scheduler, settings.network.check_interval
    )

    logger.info("Starting tracking engine...")
    await _runtime.engine.start()
    return _runtime


async def stop_runtime(*, quiet: bool = False) -> Optional[Runtime]:
    """Stop tracking, returns directly if not running.

    Args:
        quiet: When True, only log debug messages, avoid terminal shutdown messages.
    """
    runtime = _runtime
    if runtime is None or not runtime.engine.is_running:
        if not quiet:
            logger.info("Tracking engine is not currently running")
        return runtime

    if not quiet:
        logger.info("Stopping tracking engine...")

    runtime.network_monitor.stop_monitoring()

    try:
        # Add timeout protection: wait at most 5 seconds to close the final entry
        await asyncio.wait_for(runtime.engine.stop(), timeout=5.0)
    except asyncio.TimeoutError:
        if not quiet:
            logger.warning("Tracking engine stop timeout")

    cleared = runtime.request_queue.clear()
    if cleared:
        logger.debug(f"Dropped {cleared} queued AI requests")

    close = getattr(runtime.sample_source, "close", None)
    if callable(close):
        close()

    if not quiet:
        logger.info("Tracking engine stopped")
    return runtime


def get_runtime() -> Optional[Runtime]:
    return _runtime


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    """SIGINT / SIGTERM request a clean stop"""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no add_signal_handler
            signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(stop_event.set))
    logger.debug("Signal handlers registered")


async def _run(config_file: Optional[str]) -> int:
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    runtime = await start_runtime(config_file)
    runtime.notifier.subscribe(
        lambda event, payload: logger.info(f"[{event}] {json.dumps(payload, default=str)}")
    )

    await stop_event.wait()
    logger.debug("Received stop signal, preparing to exit...")
    await stop_runtime()
    return 0


async def _status(config_file: Optional[str]) -> int:
    settings = _load_settings(config_file)
    switch_database(str(settings.get_database_path()))
    db = get_db()

    llm_client = LLMClient(
        settings.ai.api_key,
        request_queue=RequestQueue(settings.ai.max_requests_per_minute),
        usage_ledger=db.ai_usage,
    )
    ai_service = AIJudgmentService(llm_client, db.ai_usage, settings.ai.monthly_budget)
    budget = await ai_service.get_budget_status()
    current = await db.entries.find_current()

    status = {
        "database": str(db.db_path),
        "tables": db.get_table_counts(),
        "api_key_configured": llm_client.has_api_key(),
        "budget": budget.model_dump(),
        "open_entry": current.model_dump(mode="json") if current else None,
    }
    print(json.dumps(status, indent=2, ensure_ascii=False))
    return 0


def _validate_rule(args: argparse.Namespace) -> int:
    validation = RuleMatcher.validate_pattern(args.rule_type, args.pattern)
    output = {"valid": validation.valid, "error": validation.error}

    if validation.valid and (args.title or args.app or args.url):
        sample = ScreenSample(
            window_title=args.title,
            app_name=args.app,
            url=args.url,
            timestamp=SystemClock().now(),
        )
        # Matching a single rule needs no rule source
        result = RuleMatcher(rule_source=None).test_rule(
            RuleType(args.rule_type), args.pattern, sample
        )
        output["match"] = result.model_dump()

    print(json.dumps(output, indent=2, ensure_ascii=False))
    return 0 if validation.valid else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autotracker",
        description="Automatic project time tracking",
    )
    parser.add_argument("--config", help="Path to config.toml (default: ~/.config/autotracker/config.toml)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Start tracking until interrupted")
    subparsers.add_parser("status", help="Show database, budget and open entry status")

    validate = subparsers.add_parser("validate-rule", help="Check a rule pattern, optionally against a sample")
    validate.add_argument("rule_type", choices=[t.value for t in RuleType])
    validate.add_argument("pattern")
    validate.add_argument("--title", help="Window title to test against")
    validate.add_argument("--app", help="Application name to test against")
    validate.add_argument("--url", help="URL to test against")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        setup_logging(args.log_level)

    if args.command == "run":
        return asyncio.run(_run(args.config))
    if args.command == "status":
        return asyncio.run(_status(args.config))
    if args.command == "validate-rule":
        return _validate_rule(args)

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
