"""
TrackingEngine - Orchestrates sampling, change detection and work entries

States: stopped -> running -> {running, paused} -> stopped

Two independent scheduled loops:
- Capture loop: window sample + optional screenshot + full change cascade
  (fires once immediately on start)
- Metadata loop: window sample + structural diff only

Whenever a loop sees a change, the engine resolves the project on its own
(rule match, then AI judgment, then unassigned) and opens, closes or
refreshes work entries accordingly. Low-confidence entries raise a
confirmation request.
"""

from datetime import datetime
from typing import Any, List, NamedTuple, Optional

from core.logger import get_logger
from core.scheduler import Clock, ScheduledTask, Scheduler, SystemClock
from core.settings import TrackingSettings
from models.entities import Project, WorkEntry
from models.tracking import (
    ConfirmationAction,
    ConfirmationRequest,
    ConfirmationResponse,
    ProjectAlternative,
    ScreenSample,
    SuggestedProject,
    TrackingStatus,
    WindowMetadata,
)
from processing.change_detector import structural_diff

logger = get_logger(__name__)

UNASSIGNED_PROJECT_NAME = "Unassigned"
MAX_ALTERNATIVES = 3


class ProjectDecision(NamedTuple):
    project_id: Optional[str]
    project_name: Optional[str]
    confidence: int
    reasoning: str
    alternatives: List[ProjectAlternative]
    is_work: bool = True


class TrackingEngine:
    """
    Tracking orchestrator

    All collaborators are injected; the engine owns no singletons.

    Args:
        project_source: async find_all(include_archived) / find_by_id(id)
        entry_store: async create / end_entry / update / delete / split / find_by_id
        sample_source: async get_active_window() -> WindowMetadata
        change_detector: ChangeDetector
        rule_matcher: RuleMatcher
        ai_service: AIJudgmentService (optional)
        screenshot_source: async capture(entry_id, metadata) -> bytes (optional)
        password_detector: PasswordDetector (optional)
        network_monitor: object exposing is_online (optional, assumed online)
        notifier: NotificationService (optional)
        scheduler: Scheduler for both loops
        clock: time source
        options: TrackingSettings
    """

    def __init__(
        self,
        *,
        project_source: Any,
        entry_store: Any,
        sample_source: Any,
        change_detector: Any,
        rule_matcher: Any,
        scheduler: Scheduler,
        ai_service: Optional[Any] = None,
        screenshot_source: Optional[Any] = None,
        password_detector: Optional[Any] = None,
        network_monitor: Optional[Any] = None,
        notifier: Optional[Any] = None,
        clock: Optional[Clock] = None,
        options: Optional[TrackingSettings] = None,
    ):
        self.project_source = project_source
        self.entry_store = entry_store
        self.sample_source = sample_source
        self.change_detector = change_detector
        self.rule_matcher = rule_matcher
        self.ai_service = ai_service
        self.screenshot_source = screenshot_source
        self.password_detector = password_detector
        self.network_monitor = network_monitor
        self.notifier = notifier
        self.scheduler = scheduler
        self.clock = clock or SystemClock()
        self.options = options.model_copy() if options else TrackingSettings()

        # Tracking state
        self.is_running = False
        self.is_paused = False
        self.started_at: Optional[datetime] = None
        self.current_entry: Optional[WorkEntry] = None
        self.current_project_id: Optional[str] = None
        self.current_project_name: Optional[str] = None
        self.last_sample: Optional[ScreenSample] = None
        self.pending_confirmation: Optional[ConfirmationRequest] = None

        self.capture_task: Optional[ScheduledTask] = None
        self.metadata_task: Optional[ScheduledTask] = None

        # Statistics
        self.stats = {
            "capture_ticks": 0,
            "metadata_ticks": 0,
            "failed_ticks": 0,
            "project_switches": 0,
            "confirmations_requested": 0,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Start tracking; returns False when already running"""
        if self.is_running:
            logger.warning("TrackingEngine is already running")
            return False

        self.is_running = True
        self.is_paused = False
        self.started_at = self.clock.now()

        await self._open_entry(None, None, 0, "Tracking started")
        self._start_loops()

        if self.notifier:
            self.notifier.emit_tracking_started(self.current_entry)

        logger.info(
            f"TrackingEngine started (capture every {self.options.capture_interval}s, "
            f"metadata every {self.options.metadata_interval}s)"
        )
        return True

    async def stop(self) -> Optional[WorkEntry]:
        """
        Stop tracking

        Returns:
            The closed final entry, or None when it was shorter than the
            minimum duration and got deleted (or tracking was not running)
        """
        if not self.is_running:
            return None

        self._stop_loops()
        self.change_detector.reset()

        final_entry = await self._finish_current_entry()

        self.is_running = False
        self.is_paused = False
        self.started_at = None
        self.current_entry = None
        self.current_project_id = None
        self.current_project_name = None
        self.last_sample = None
        self.pending_confirmation = None

        if self.notifier:
            self.notifier.emit_tracking_stopped()

        logger.info("TrackingEngine stopped")
        return final_entry

    def pause(self) -> bool:
        """Stop scheduling ticks; entry and detector state are kept"""
        if not self.is_running or self.is_paused:
            return False

        self.is_paused = True
        self._stop_loops()
        logger.info("TrackingEngine paused")
        return True

    def resume(self) -> bool:
        if not self.is_running or not self.is_paused:
            return False

        self.is_paused = False
        self._start_loops()
        logger.info("TrackingEngine resumed")
        return True

    def get_status(self) -> TrackingStatus:
        elapsed = 0
        if self.started_at is not None:
            elapsed = max(0, int((self.clock.now() - self.started_at).total_seconds()))

        return TrackingStatus(
            is_running=self.is_running,
            is_paused=self.is_paused,
            started_at=self.started_at,
            current_entry_id=self.current_entry.id if self.current_entry else None,
            current_project_id=self.current_project_id,
            current_project_name=self.current_project_name,
            elapsed_seconds=elapsed,
            confidence=self.current_entry.confidence if self.current_entry else 0,
        )

    def update_config(self, **options: Any) -> None:
        """
        Update tracking options; loops are restarted when running

        Raises:
            ValueError: unknown option name
        """
        for key, value in options.items():
            if key not in TrackingSettings.model_fields:
                raise ValueError(f"Unknown tracking option: {key}")
            setattr(self.options, key, value)

        if self.is_running and not self.is_paused:
            self._stop_loops()
            self._start_loops()

        logger.info(f"Tracking options updated: {options}")

    def _start_loops(self) -> None:
        self.capture_task = self.scheduler.schedule(
            self.options.capture_interval,
            self.capture_tick,
            name="capture",
            run_immediately=True,
        )
        self.metadata_task = self.scheduler.schedule(
            self.options.metadata_interval,
            self.metadata_tick,
            name="metadata",
        )

    def _stop_loops(self) -> None:
        if self.capture_task:
            self.capture_task.cancel()
            self.capture_task = None
        if self.metadata_task:
            self.metadata_task.cancel()
            self.metadata_task = None

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    async def capture_tick(self) -> None:
        """One capture-loop iteration; failures skip the tick"""
        self.stats["capture_ticks"] += 1
        try:
            await self._capture_and_analyze()
        except Exception as e:
            self.stats["failed_ticks"] += 1
            logger.error(f"Capture tick failed: {e}", exc_info=True)

    async def metadata_tick(self) -> None:
        """One metadata-loop iteration; failures skip the tick"""
        self.stats["metadata_ticks"] += 1
        try:
            await self._collect_metadata()
        except Exception as e:
            self.stats["failed_ticks"] += 1
            logger.error(f"Metadata tick failed: {e}", exc_info=True)

    async def _capture_and_analyze(self) -> None:
        metadata: WindowMetadata = await self.sample_source.get_active_window()
        sample = ScreenSample.from_metadata(metadata)

        image: Optional[bytes] = None
        if self.options.capture_screenshots and self.screenshot_source is not None:
            if self._is_password_screen(metadata):
                logger.info("Password screen detected, skipping screenshot")
            else:
                entry_id = self.current_entry.id if self.current_entry else None
                image = await self.screenshot_source.capture(entry_id, metadata)

        result = await self.change_detector.detect(sample, image)
        self.last_sample = result.current_sample

        logger.debug(
            f"Capture tick: {'change' if result.has_change else 'no change'} "
            f"(layer {result.layer}, {result.processing_time_ms:.1f}ms)"
        )

        if result.has_change:
            await self._judge_and_update_project(result.current_sample)

    async def _collect_metadata(self) -> None:
        metadata: WindowMetadata = await self.sample_source.get_active_window()
        sample = ScreenSample.from_metadata(metadata)

        diff = structural_diff(self.last_sample, sample)
        self.last_sample = sample

        if diff.has_change:
            logger.debug(f"Quick change detected: {diff.reasoning}")
            await self._judge_and_update_project(sample)

    def _is_password_screen(self, metadata: WindowMetadata) -> bool:
        if self.password_detector is None:
            return False
        return self.password_detector.detect(metadata).is_password_screen

    # ------------------------------------------------------------------
    # Project resolution
    # ------------------------------------------------------------------

    def _is_online(self) -> bool:
        if self.network_monitor is None:
            return True
        return bool(self.network_monitor.is_online)

    async def resolve_project(self, sample: ScreenSample) -> ProjectDecision:
        """Rule match wins outright; then AI judgment; otherwise unassigned"""
        match = await self.rule_matcher.match(sample)
        if match.matched and match.project_id:
            return ProjectDecision(
                project_id=match.project_id,
                project_name=match.project_name,
                confidence=match.confidence,
                reasoning=f"Rule match: {match.matched_text}",
                alternatives=[],
            )

        if self.ai_service is None or not self.ai_service.has_credential():
            return ProjectDecision(None, None, 0, "No rule matched", [])

        if not self._is_online():
            logger.info("Offline, skipping AI judgment and using rule matching only")
            return ProjectDecision(None, None, 0, "No rule matched (offline)", [])

        projects: List[Project] = await self.project_source.find_all(False)
        judgment = await self.ai_service.judge_project(
            sample, projects, ocr_text=sample.ocr_text
        )
        if not judgment.project_id:
            return ProjectDecision(
                None, None, 0, judgment.reasoning, judgment.alternatives, judgment.is_work
            )
        return ProjectDecision(
            project_id=judgment.project_id,
            project_name=judgment.project_name,
            confidence=judgment.confidence,
            reasoning=judgment.reasoning,
            alternatives=judgment.alternatives,
            is_work=judgment.is_work,
        )

    async def _judge_and_update_project(self, sample: ScreenSample) -> None:
        decision = await self.resolve_project(sample)

        if decision.project_id != self.current_project_id:
            logger.info(
                f"Project changed: {self.current_project_name or UNASSIGNED_PROJECT_NAME} -> "
                f"{decision.project_name or UNASSIGNED_PROJECT_NAME} "
                f"(confidence={decision.confidence})"
            )
            self.stats["project_switches"] += 1

            await self._finish_current_entry()
            entry = await self._open_entry(
                decision.project_id,
                decision.project_name,
                decision.confidence,
                decision.reasoning,
                decision.is_work,
            )

            if decision.confidence < self.options.auto_confirm_threshold:
                await self._request_confirmation(entry, decision)
            return

        if self.current_entry is None:
            return

        updated = await self.entry_store.update(
            self.current_entry.id,
            confidence=decision.confidence,
            reasoning=decision.reasoning,
        )
        if updated is not None:
            self.current_entry = updated
            if self.notifier:
                self.notifier.emit_entry_updated(updated)

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def _open_entry(
        self,
        project_id: Optional[str],
        project_name: Optional[str],
        confidence: int,
        reasoning: str,
        is_work: bool = True,
    ) -> WorkEntry:
        entry = await self.entry_store.create(
            project_id=project_id,
            start_time=self.clock.now(),
            confidence=confidence,
            reasoning=reasoning or None,
            is_work=is_work,
        )

        if project_id and project_name is None:
            project = await self.project_source.find_by_id(project_id)
            project_name = project.name if project else None

        self.current_entry = entry
        self.current_project_id = project_id
        self.current_project_name = project_name if project_id else None

        if self.notifier:
            self.notifier.emit_entry_created(entry)
        return entry

    async def _finish_current_entry(self) -> Optional[WorkEntry]:
        """Close the current entry, or drop it when below the minimum duration"""
        entry = self.current_entry
        if entry is None:
            return None

        now = self.clock.now()
        if entry.duration_seconds(now) < self.options.min_entry_duration:
            await self.entry_store.delete(entry.id)
            logger.debug(f"Dropped short entry {entry.id}")
            self.current_entry = None
            return None

        closed = await self.entry_store.end_entry(entry.id, now)
        self.current_entry = None
        if closed is not None and self.notifier:
            self.notifier.emit_entry_updated(closed)
        return closed

    # ------------------------------------------------------------------
    # Confirmation workflow
    # ------------------------------------------------------------------

    async def _build_alternatives(self, decision: ProjectDecision) -> List[ProjectAlternative]:
        alternatives: List[ProjectAlternative] = []
        seen = {decision.project_id}

        for alternative in decision.alternatives:
            if alternative.project_id in seen:
                continue
            seen.add(alternative.project_id)
            alternatives.append(alternative)

        if len(alternatives) < MAX_ALTERNATIVES:
            projects: List[Project] = await self.project_source.find_all(False)
            for project in projects:
                if len(alternatives) >= MAX_ALTERNATIVES:
                    break
                if project.id in seen:
                    continue
                seen.add(project.id)
                alternatives.append(
                    ProjectAlternative(project_id=project.id, project_name=project.name, score=0)
                )

        return alternatives[:MAX_ALTERNATIVES]

    async def _request_confirmation(self, entry: WorkEntry, decision: ProjectDecision) -> None:
        request = ConfirmationRequest(
            entry_id=entry.id,
            suggested_project=SuggestedProject(
                id=decision.project_id,
                name=self.current_project_name or UNASSIGNED_PROJECT_NAME,
            ),
            confidence=decision.confidence,
            reasoning=decision.reasoning,
            alternatives=await self._build_alternatives(decision),
        )
        self.pending_confirmation = request
        self.stats["confirmations_requested"] += 1

        logger.info(
            f"Confirmation needed for entry {entry.id} "
            f"({request.suggested_project.name}, confidence={decision.confidence})"
        )
        if self.notifier:
            self.notifier.emit_confirmation_needed(request)

    async def handle_confirmation_response(self, response: ConfirmationResponse) -> bool:
        """
        Apply the user's answer to a confirmation request

        confirm: confidence -> 100
        change:  reassign project, confidence -> 100
        split:   split the entry at split_time

        Returns:
            False when the action is missing its argument or the entry is unknown
        """
        entry_id = response.entry_id
        success = True

        if response.action == ConfirmationAction.CONFIRM:
            updated = await self.entry_store.update(entry_id, confidence=100)
            success = updated is not None
            self._apply_entry_update(updated)

        elif response.action == ConfirmationAction.CHANGE:
            if response.new_project_id is None:
                logger.warning(f"Change requested for entry {entry_id} without a project")
                success = False
            else:
                updated = await self.entry_store.update(
                    entry_id, project_id=response.new_project_id, confidence=100
                )
                success = updated is not None
                if updated is not None and self.current_entry and self.current_entry.id == entry_id:
                    project = await self.project_source.find_by_id(response.new_project_id)
                    self.current_project_id = response.new_project_id
                    self.current_project_name = project.name if project else None
                self._apply_entry_update(updated)

        elif response.action == ConfirmationAction.SPLIT:
            if response.split_time is None:
                logger.warning(f"Split requested for entry {entry_id} without a time")
                success = False
            else:
                try:
                    result = await self.entry_store.split(entry_id, response.split_time)
                except ValueError as e:
                    logger.warning(f"Cannot split entry {entry_id}: {e}")
                    success = False
                else:
                    if self.current_entry and self.current_entry.id == entry_id:
                        self.current_entry = result.after
                    if self.notifier:
                        self.notifier.emit_entry_updated(result.before)
                        self.notifier.emit_entry_created(result.after)

        self.pending_confirmation = None
        logger.info(f"Confirmation response '{response.action.value}' for entry {entry_id}")
        return success

    def _apply_entry_update(self, updated: Optional[WorkEntry]) -> None:
        if updated is None:
            return
        if self.current_entry and self.current_entry.id == updated.id:
            self.current_entry = updated
        if self.notifier:
            self.notifier.emit_entry_updated(updated)
