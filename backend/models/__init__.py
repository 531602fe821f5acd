"""
Data models for the tracking core
"""

from .base import (
    AIUsageLog,
    BaseModel,
    BudgetStatus,
    DailyUsage,
    ModelUsage,
    MonthlyUsage,
)
from .entities import Project, Rule, RuleType, SplitResult, WorkEntry
from .tracking import (
    AIJudgmentEvidence,
    ChangeDetectionResult,
    ChangeJudgment,
    ChangeType,
    ConfirmationAction,
    ConfirmationRequest,
    ConfirmationResponse,
    MatchedRuleEvidence,
    MatchResult,
    PasswordDetectionResult,
    PatternValidation,
    ProjectAlternative,
    ProjectJudgmentResult,
    RuleMatch,
    ScreenSample,
    SuggestedProject,
    TrackingStatus,
    WindowMetadata,
)

__all__ = [
    "BaseModel",
    "AIUsageLog",
    "BudgetStatus",
    "DailyUsage",
    "ModelUsage",
    "MonthlyUsage",
    # Entities
    "Project",
    "Rule",
    "RuleType",
    "SplitResult",
    "WorkEntry",
    # Tracking
    "AIJudgmentEvidence",
    "ChangeDetectionResult",
    "ChangeJudgment",
    "ChangeType",
    "ConfirmationAction",
    "ConfirmationRequest",
    "ConfirmationResponse",
    "MatchedRuleEvidence",
    "MatchResult",
    "PasswordDetectionResult",
    "PatternValidation",
    "ProjectAlternative",
    "ProjectJudgmentResult",
    "RuleMatch",
    "ScreenSample",
    "SuggestedProject",
    "TrackingStatus",
    "WindowMetadata",
]
