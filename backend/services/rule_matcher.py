"""
Rule Matcher - deterministic classification from user-authored rules

Rule types:
- app_name: case-insensitive substring of the application name
- window_title / url: case-insensitive regular expression, screened for
  catastrophic-backtracking shapes before it is ever executed
- keyword: JSON array of keywords (or one bare string), any of which may
  appear in title / url / app name / extra keywords

A rule hit is user-authored ground truth, so its confidence is always 100.
"""

import json
import re
import time
from typing import Any, Iterable, List, Optional, Sequence

from core.logger import get_logger
from models.entities import Rule, RuleType
from models.tracking import MatchResult, PatternValidation, RuleMatch, ScreenSample

logger = get_logger(__name__)

REGEX_TIME_BUDGET_MS = 100
MAX_PATTERN_LENGTH = 200
RULE_MATCH_CONFIDENCE = 100

# Two quantifiers in a row, e.g. "a+*" or "x{2}+"
_STACKED_QUANTIFIERS = re.compile(r"(\+|\*|\{[\d,]+\})\s*(\+|\*|\{[\d,]+\})")
# A quantified group with alternation: (a|ab)+ ; dangerous when a branch is a wildcard
_QUANTIFIED_ALTERNATION = re.compile(r"\((?:\?:)?([^()]*\|[^()]*)\)\s*(?:[+*]|\{\d)")
# Alternation of bare wildcards anywhere: (.*|.+)
_WILDCARD_ALTERNATION = re.compile(r"\.[*+]\s*\|\s*\.[*+]")


def _is_quantifier_at(text: str, index: int) -> bool:
    if index >= len(text):
        return False
    if text[index] in "+*":
        return True
    return text[index] == "{" and index + 1 < len(text) and text[index + 1].isdigit()


def _quantified_groups(pattern: str) -> Iterable[str]:
    """Bodies of every group followed by +, * or {n}, nested groups included"""
    opened: List[int] = []
    in_class = False
    index = 0
    while index < len(pattern):
        char = pattern[index]
        if char == "\\":
            index += 2
            continue
        if in_class:
            in_class = char != "]"
        elif char == "[":
            in_class = True
        elif char == "(":
            opened.append(index)
        elif char == ")" and opened:
            start = opened.pop()
            following = index + 1
            while following < len(pattern) and pattern[following].isspace():
                following += 1
            if _is_quantifier_at(pattern, following):
                yield pattern[start + 1 : index]
        index += 1


def _has_unbounded_quantifier(body: str) -> bool:
    """Unescaped +, * or {n} anywhere in a group body, outside character classes"""
    in_class = False
    index = 0
    while index < len(body):
        char = body[index]
        if char == "\\":
            index += 2
            continue
        if in_class:
            in_class = char != "]"
        elif char == "[":
            in_class = True
        elif _is_quantifier_at(body, index):
            return True
        index += 1
    return False


def is_unsafe_regex(pattern: str) -> Optional[str]:
    """
    Screen a pattern for known catastrophic-backtracking shapes

    Returns:
        Human-readable reason when the pattern is rejected, otherwise None
    """
    if len(pattern) > MAX_PATTERN_LENGTH:
        return f"Pattern is too long (max {MAX_PATTERN_LENGTH} characters)"
    if _STACKED_QUANTIFIERS.search(pattern):
        return "Pattern contains stacked quantifiers"
    if any(_has_unbounded_quantifier(body) for body in _quantified_groups(pattern)):
        return "Pattern contains a nested quantifier"
    if _WILDCARD_ALTERNATION.search(pattern):
        return "Pattern alternates between wildcards"
    for match in _QUANTIFIED_ALTERNATION.finditer(pattern):
        branches = match.group(1).split("|")
        if any(".*" in branch or ".+" in branch for branch in branches):
            return "Pattern repeats an alternation of wildcards"
    return None


def parse_keywords(pattern: str) -> List[str]:
    """A JSON array of keywords, or the raw pattern as a single keyword"""
    try:
        parsed = json.loads(pattern)
    except ValueError:
        return [pattern]
    if isinstance(parsed, list):
        return [str(keyword) for keyword in parsed if str(keyword).strip()]
    return [pattern]


class RuleMatcher:
    """
    Evaluates active rules against a screen sample

    Args:
        rule_source: find_all(active_only) / find_by_project(project_id, active_only)
        project_source: optional find_by_id(project_id) used to name the match
    """

    def __init__(self, rule_source: Any, project_source: Optional[Any] = None):
        self.rule_source = rule_source
        self.project_source = project_source

    async def match(
        self, sample: ScreenSample, extra_keywords: Optional[Sequence[str]] = None
    ) -> MatchResult:
        """First matching rule across all projects, highest priority first"""
        rules = await self.rule_source.find_all(active_only=True)
        return await self._first_match(rules, sample, extra_keywords)

    async def match_for_project(
        self,
        project_id: str,
        sample: ScreenSample,
        extra_keywords: Optional[Sequence[str]] = None,
    ) -> MatchResult:
        rules = await self.rule_source.find_by_project(project_id, active_only=True)
        return await self._first_match(rules, sample, extra_keywords)

    async def _first_match(
        self,
        rules: Iterable[Rule],
        sample: ScreenSample,
        extra_keywords: Optional[Sequence[str]],
    ) -> MatchResult:
        # Stable sort keeps the source order for equal priorities
        ordered = sorted((r for r in rules if r.is_active), key=lambda r: -r.priority)
        for rule in ordered:
            result = self.match_rule(rule, sample, extra_keywords)
            if result.matched:
                logger.debug(
                    f"Rule {rule.id} ({rule.rule_type.value}: {rule.pattern!r}) "
                    f"matched project {rule.project_id}"
                )
                return MatchResult(
                    matched=True,
                    project_id=rule.project_id,
                    project_name=await self._project_name(rule.project_id),
                    rule=rule,
                    confidence=RULE_MATCH_CONFIDENCE,
                    matched_text=result.matched_text,
                )
        return MatchResult()

    async def _project_name(self, project_id: str) -> Optional[str]:
        if self.project_source is None:
            return None
        project = await self.project_source.find_by_id(project_id)
        return project.name if project else None

    def match_rule(
        self,
        rule: Rule,
        sample: ScreenSample,
        extra_keywords: Optional[Sequence[str]] = None,
    ) -> RuleMatch:
        """Evaluate one rule; a bad pattern is a miss, never an exception"""
        rule_type = RuleType(rule.rule_type)
        if rule_type == RuleType.APP_NAME:
            return self._match_app_name(rule.pattern, sample.app_name)
        if rule_type == RuleType.WINDOW_TITLE:
            return self._match_regex(rule.pattern, sample.window_title)
        if rule_type == RuleType.URL:
            return self._match_regex(rule.pattern, sample.url)
        if rule_type == RuleType.KEYWORD:
            return self._match_keywords(rule.pattern, sample, extra_keywords)
        return RuleMatch(matched=False)

    @staticmethod
    def _match_app_name(pattern: str, app_name: Optional[str]) -> RuleMatch:
        if not app_name or not pattern:
            return RuleMatch(matched=False)
        if pattern.lower() in app_name.lower():
            return RuleMatch(matched=True, matched_text=app_name)
        return RuleMatch(matched=False)

    @staticmethod
    def _match_regex(pattern: str, target: Optional[str]) -> RuleMatch:
        if not target:
            return RuleMatch(matched=False)

        reason = is_unsafe_regex(pattern)
        if reason:
            logger.warning(f"Skipping unsafe regex {pattern!r}: {reason}")
            return RuleMatch(matched=False)

        try:
            regex = re.compile(pattern, re.IGNORECASE)
        except re.error as e:
            logger.warning(f"Invalid regex pattern {pattern!r}: {e}")
            return RuleMatch(matched=False)

        started = time.perf_counter()
        found = regex.search(target)
        elapsed_ms = (time.perf_counter() - started) * 1000
        if elapsed_ms > REGEX_TIME_BUDGET_MS:
            logger.warning(
                f"Regex {pattern!r} took {elapsed_ms:.0f}ms "
                f"(budget {REGEX_TIME_BUDGET_MS}ms)"
            )

        if found:
            return RuleMatch(matched=True, matched_text=found.group(0))
        return RuleMatch(matched=False)

    @staticmethod
    def _match_keywords(
        pattern: str,
        sample: ScreenSample,
        extra_keywords: Optional[Sequence[str]],
    ) -> RuleMatch:
        haystack = " ".join(
            part
            for part in [sample.window_title, sample.url, sample.app_name, *(extra_keywords or [])]
            if part
        ).lower()
        if not haystack:
            return RuleMatch(matched=False)

        for keyword in parse_keywords(pattern):
            if keyword.lower() in haystack:
                return RuleMatch(matched=True, matched_text=keyword)
        return RuleMatch(matched=False)

    def test_rule(
        self,
        rule_type: RuleType,
        pattern: str,
        sample: ScreenSample,
        extra_keywords: Optional[Sequence[str]] = None,
    ) -> RuleMatch:
        """Try a pattern against a sample without saving it"""
        rule = Rule(
            id="test",
            project_id="test",
            rule_type=RuleType(rule_type),
            pattern=pattern,
            priority=1,
        )
        return self.match_rule(rule, sample, extra_keywords)

    @staticmethod
    def validate_pattern(rule_type: RuleType, pattern: str) -> PatternValidation:
        if not pattern or not pattern.strip():
            return PatternValidation(valid=False, error="Pattern must not be empty")

        try:
            rule_type = RuleType(rule_type)
        except ValueError:
            return PatternValidation(valid=False, error=f"Unknown rule type: {rule_type}")

        if rule_type in (RuleType.WINDOW_TITLE, RuleType.URL):
            reason = is_unsafe_regex(pattern)
            if reason:
                return PatternValidation(valid=False, error=f"Unsafe regular expression: {reason}")
            try:
                re.compile(pattern)
            except re.error as e:
                return PatternValidation(valid=False, error=f"Invalid regular expression: {e}")

        if rule_type == RuleType.KEYWORD:
            try:
                parsed = json.loads(pattern)
            except ValueError:
                # A bare string is a single keyword
                return PatternValidation(valid=True)
            if not isinstance(parsed, list):
                return PatternValidation(
                    valid=False, error="Keywords must be a JSON array of strings"
                )
            if not [k for k in parsed if str(k).strip()]:
                return PatternValidation(valid=False, error="Enter at least one keyword")

        return PatternValidation(valid=True)
