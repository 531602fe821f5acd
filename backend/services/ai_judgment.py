"""
AI Judgment Service - two-stage reasoning-service judgments

Stage 1 (detect_change) asks only whether the work context changed and
short-circuits the obvious cases locally. Stage 2 (judge_project) picks a
project from the known list. Both are gated by the monthly budget and
neither touches tracking state; callers decide what to do with the result.
"""

from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlparse

from core.json_parser import (
    coerce_bool,
    coerce_int,
    coerce_optional_id,
    coerce_str,
    parse_json_from_response,
)
from core.logger import get_logger
from llm.prompts import build_change_detection_messages, build_project_judgment_messages
from models.base import BudgetStatus
from models.entities import Project
from models.tracking import (
    ChangeJudgment,
    ProjectAlternative,
    ProjectJudgmentResult,
    ScreenSample,
)

logger = get_logger(__name__)

BUDGET_EXCEEDED_REASON = "Monthly AI budget exceeded; judgment skipped"
PARSE_FAILURE_REASON = "Could not parse the AI response"


def _hostname(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    try:
        return urlparse(url).hostname
    except ValueError:
        return None


class AIJudgmentService:
    """
    Args:
        llm_client: LLMClient (chat_completion / has_api_key / get_model)
        usage_ledger: anything with async monthly_usage() -> MonthlyUsage
        monthly_budget: USD ceiling for the current calendar month
    """

    def __init__(self, llm_client: Any, usage_ledger: Any, monthly_budget: float = 5.0):
        self.llm_client = llm_client
        self.usage_ledger = usage_ledger
        self.monthly_budget = monthly_budget

    def set_monthly_budget(self, budget: float) -> None:
        self.monthly_budget = max(0.0, float(budget))
        logger.info(f"Monthly AI budget set to ${self.monthly_budget:.2f}")

    def has_credential(self) -> bool:
        return self.llm_client.has_api_key()

    async def _current_usage(self) -> float:
        usage = await self.usage_ledger.monthly_usage()
        return usage.total_cost

    async def is_within_budget(self) -> bool:
        return await self._current_usage() < self.monthly_budget

    async def get_budget_status(self) -> BudgetStatus:
        current = await self._current_usage()
        budget = self.monthly_budget
        if budget > 0:
            percent = current / budget * 100
        else:
            percent = 100.0
        return BudgetStatus(
            monthly_budget=budget,
            current_usage=current,
            remaining=max(0.0, budget - current),
            percent_used=round(percent, 2),
            is_over_budget=current >= budget,
        )

    # ------------------------------------------------------------------
    # Stage 1: change detection
    # ------------------------------------------------------------------

    async def detect_change(
        self, current: ScreenSample, previous: Optional[ScreenSample]
    ) -> ChangeJudgment:
        if not await self.is_within_budget():
            logger.warning("AI budget exceeded, skipping change detection")
            return ChangeJudgment(has_change=False, confidence=0, reasoning=BUDGET_EXCEEDED_REASON)

        if previous is None:
            return ChangeJudgment(
                has_change=True, confidence=100, reasoning="First observation (no previous context)"
            )

        if self._has_obvious_change(previous, current):
            return ChangeJudgment(
                has_change=True,
                confidence=100,
                reasoning="Application or site changed",
            )

        if self._is_identical(previous, current):
            return ChangeJudgment(has_change=False, confidence=100, reasoning="Context unchanged")

        try:
            result = await self.llm_client.chat_completion(
                build_change_detection_messages(previous, current),
                model=self.llm_client.get_model("change_detection"),
                temperature=0.1,
                max_tokens=100,
                request_type="change_detection",
            )
        except Exception as e:
            logger.error(f"Change detection call failed: {e}", exc_info=True)
            return ChangeJudgment(has_change=False, confidence=0, reasoning=f"Error: {e}")

        parsed = parse_json_from_response(result.content)
        if parsed is None:
            logger.warning(f"Failed to parse change detection response: {result.content!r}")
            return ChangeJudgment(
                has_change=False,
                confidence=0,
                reasoning=PARSE_FAILURE_REASON,
                tokens_used=result.tokens_used,
                cost=result.cost,
            )

        return ChangeJudgment(
            has_change=coerce_bool(parsed.get("hasChange")),
            confidence=coerce_int(parsed.get("confidence"), default=50),
            reasoning=coerce_str(parsed.get("reasoning")),
            tokens_used=result.tokens_used,
            cost=result.cost,
        )

    @staticmethod
    def _has_obvious_change(previous: ScreenSample, current: ScreenSample) -> bool:
        if previous.app_name != current.app_name:
            return True
        if previous.url and current.url:
            previous_host = _hostname(previous.url)
            current_host = _hostname(current.url)
            if previous_host and current_host and previous_host != current_host:
                return True
        return False

    @staticmethod
    def _is_identical(previous: ScreenSample, current: ScreenSample) -> bool:
        return (
            previous.window_title == current.window_title
            and previous.app_name == current.app_name
            and previous.url == current.url
        )

    # ------------------------------------------------------------------
    # Stage 2: project judgment
    # ------------------------------------------------------------------

    async def judge_project(
        self,
        sample: ScreenSample,
        projects: Sequence[Project],
        ocr_text: Optional[str] = None,
    ) -> ProjectJudgmentResult:
        if not await self.is_within_budget():
            logger.warning("AI budget exceeded, skipping project judgment")
            return ProjectJudgmentResult(confidence=0, reasoning=BUDGET_EXCEEDED_REASON)

        if not projects:
            return ProjectJudgmentResult(confidence=100, reasoning="No projects registered")

        try:
            result = await self.llm_client.chat_completion(
                build_project_judgment_messages(sample, projects, ocr_text),
                model=self.llm_client.get_model("project_judgment"),
                temperature=0.3,
                max_tokens=500,
                request_type="project_judgment",
            )
        except Exception as e:
            logger.error(f"Project judgment call failed: {e}", exc_info=True)
            return ProjectJudgmentResult(confidence=0, reasoning=f"Error: {e}")

        judgment = self._parse_project_judgment(result.content, projects)
        judgment.tokens_used = result.tokens_used
        judgment.cost = result.cost
        return judgment

    @staticmethod
    def _parse_project_judgment(
        content: str, projects: Sequence[Project]
    ) -> ProjectJudgmentResult:
        parsed = parse_json_from_response(content)
        if parsed is None:
            logger.warning(f"Failed to parse project judgment response: {content!r}")
            return ProjectJudgmentResult(confidence=0, reasoning=PARSE_FAILURE_REASON)

        by_id: Dict[str, Project] = {p.id: p for p in projects}

        project_id = coerce_optional_id(parsed.get("projectId"))
        project = by_id.get(project_id) if project_id else None
        if project_id and project is None:
            logger.debug(f"Discarding unknown project id from AI: {project_id}")

        alternatives: List[ProjectAlternative] = []
        raw_alternatives = parsed.get("alternatives")
        if isinstance(raw_alternatives, list):
            seen = {project.id} if project else set()
            for item in raw_alternatives:
                if not isinstance(item, dict):
                    continue
                alt_id = coerce_optional_id(item.get("projectId"))
                alt = by_id.get(alt_id) if alt_id else None
                if alt is None or alt.id in seen:
                    continue
                seen.add(alt.id)
                alternatives.append(
                    ProjectAlternative(
                        project_id=alt.id,
                        project_name=alt.name,
                        score=coerce_int(item.get("score"), default=0),
                    )
                )

        return ProjectJudgmentResult(
            project_id=project.id if project else None,
            project_name=project.name if project else None,
            confidence=coerce_int(parsed.get("confidence"), default=0),
            reasoning=coerce_str(parsed.get("reasoning")),
            alternatives=alternatives,
            is_work=coerce_bool(parsed.get("isWork"), default=True),
        )
