from datetime import datetime, timezone
from typing import List

import pytest

from models.entities import Rule, RuleType
from models.tracking import ScreenSample
from services.rule_matcher import RuleMatcher, is_unsafe_regex, parse_keywords

NOW = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)


def _sample(**fields) -> ScreenSample:
    return ScreenSample(timestamp=NOW, **fields)


def _rule(rule_id, project_id, rule_type, pattern, priority=0, is_active=True) -> Rule:
    return Rule(
        id=rule_id,
        project_id=project_id,
        rule_type=rule_type,
        pattern=pattern,
        priority=priority,
        is_active=is_active,
    )


class _RuleSource:
    def __init__(self, rules: List[Rule]):
        self.rules = rules

    async def find_all(self, active_only: bool = True) -> List[Rule]:
        return [r for r in self.rules if r.is_active or not active_only]

    async def find_by_project(self, project_id: str, active_only: bool = True) -> List[Rule]:
        return [
            r
            for r in await self.find_all(active_only)
            if r.project_id == project_id
        ]


def test_validate_pattern_examples():
    assert not RuleMatcher.validate_pattern(RuleType.KEYWORD, "[]").valid
    assert not RuleMatcher.validate_pattern(RuleType.WINDOW_TITLE, "(.*)+").valid
    assert not RuleMatcher.validate_pattern(RuleType.WINDOW_TITLE, r"(\w+\s?)+$").valid
    assert RuleMatcher.validate_pattern(RuleType.APP_NAME, "Code").valid


def test_validate_pattern_other_cases():
    assert not RuleMatcher.validate_pattern(RuleType.APP_NAME, "   ").valid
    assert not RuleMatcher.validate_pattern(RuleType.URL, "github.com/(").valid
    assert not RuleMatcher.validate_pattern(RuleType.KEYWORD, '{"a": 1}').valid
    assert RuleMatcher.validate_pattern(RuleType.KEYWORD, '["acme", "invoice"]').valid
    assert RuleMatcher.validate_pattern(RuleType.KEYWORD, "acme").valid
    assert not RuleMatcher.validate_pattern("regex", "acme").valid


@pytest.mark.parametrize(
    "pattern",
    [
        "(a+)+",
        "(.*)+",
        "([a-z]+)*",
        "(.*|.+)",
        "(foo|.*)+",
        "a+*",
        "x" * 201,
        r"(\w+\s?)+$",
        r"(a+b?)+$",
        r"((ab)+c)*",
    ],
)
def test_unsafe_shapes_rejected(pattern):
    assert is_unsafe_regex(pattern) is not None


@pytest.mark.parametrize(
    "pattern",
    [
        r"^JIRA-\d+",
        r"github\.com/acme/.*",
        r"(invoice|receipt) \d{4}",
        "Visual Studio Code",
        r"(https?://)?acme\.com",
        r"[(+)]+ notes",
        r"(\d{4}-\d{2})",
    ],
)
def test_ordinary_patterns_allowed(pattern):
    assert is_unsafe_regex(pattern) is None


def test_parse_keywords():
    assert parse_keywords('["acme", " ", "beta"]') == ["acme", "beta"]
    assert parse_keywords("plain") == ["plain"]


@pytest.mark.asyncio
async def test_highest_priority_rule_wins():
    rules = [
        _rule("r1", "P-low", RuleType.APP_NAME, "code", priority=1),
        _rule("r2", "P-high", RuleType.WINDOW_TITLE, r"acme", priority=10),
        _rule("r3", "P-mid", RuleType.KEYWORD, '["acme"]', priority=5),
    ]
    matcher = RuleMatcher(_RuleSource(rules))

    result = await matcher.match(_sample(app_name="Code", window_title="acme/api - main.py"))

    assert result.matched
    assert result.project_id == "P-high"
    assert result.rule.id == "r2"
    assert result.confidence == 100


@pytest.mark.asyncio
async def test_equal_priority_keeps_source_order():
    rules = [
        _rule("first", "P1", RuleType.APP_NAME, "Code"),
        _rule("second", "P2", RuleType.APP_NAME, "Code"),
    ]
    matcher = RuleMatcher(_RuleSource(rules))

    for _ in range(3):
        result = await matcher.match(_sample(app_name="Code"))
        assert result.project_id == "P1"


@pytest.mark.asyncio
async def test_inactive_and_unsafe_rules_never_match():
    rules = [
        _rule("off", "P1", RuleType.APP_NAME, "Code", priority=10, is_active=False),
        _rule("evil", "P2", RuleType.WINDOW_TITLE, "(a+)+$", priority=5),
        _rule("broken", "P3", RuleType.URL, "([", priority=4),
    ]
    matcher = RuleMatcher(_RuleSource(rules))

    result = await matcher.match(
        _sample(app_name="Code", window_title="aaaaaaaaaaaaaaaaaaaaaaaa!", url="https://x.test")
    )

    assert not result.matched
    assert result.project_id is None


@pytest.mark.asyncio
async def test_keyword_rule_uses_extra_keywords():
    matcher = RuleMatcher(_RuleSource([_rule("k", "P1", RuleType.KEYWORD, '["Invoice"]')]))

    miss = await matcher.match(_sample(app_name="Preview"))
    hit = await matcher.match(_sample(app_name="Preview"), extra_keywords=["invoice 2026-01"])

    assert not miss.matched
    assert hit.matched
    assert hit.matched_text == "Invoice"


@pytest.mark.asyncio
async def test_match_for_project_and_project_name(db):
    acme = await db.projects.create("Acme", project_id="P1")
    await db.projects.create("Beta", project_id="P2")
    await db.rules.create("P1", RuleType.URL, r"github\.com/acme", priority=1)
    await db.rules.create("P2", RuleType.URL, r"github\.com", priority=0)
    matcher = RuleMatcher(db.rules, db.projects)
    sample = _sample(url="https://github.com/acme/api")

    best = await matcher.match(sample)
    scoped = await matcher.match_for_project("P2", sample)

    assert best.project_id == "P1"
    assert best.project_name == acme.name
    assert scoped.project_id == "P2"
    assert scoped.project_name == "Beta"


def test_test_rule_without_saving():
    matcher = RuleMatcher(rule_source=None)
    sample = _sample(window_title="PROJ-42 Fix login", app_name="Chrome")

    assert matcher.test_rule(RuleType.WINDOW_TITLE, r"PROJ-\d+", sample).matched_text == "PROJ-42"
    assert not matcher.test_rule(RuleType.APP_NAME, "Slack", sample).matched
