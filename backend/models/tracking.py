"""
Tracking pipeline models
Samples, cascade results, judgments and confirmation workflow payloads
"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import ConfigDict, Field

from .base import BaseModel
from .entities import Rule


class WindowMetadata(BaseModel):
    """Raw foreground-window query result from the sample source"""

    window_title: Optional[str] = None
    app_name: Optional[str] = None
    url: Optional[str] = None  # only populated for recognised browsers
    process_id: Optional[int] = None
    timestamp: datetime


class ScreenSample(BaseModel):
    """Immutable snapshot of the foreground context"""

    model_config = ConfigDict(frozen=True)

    window_title: Optional[str] = None
    app_name: Optional[str] = None
    url: Optional[str] = None
    ocr_text: Optional[str] = None
    timestamp: datetime

    @classmethod
    def from_metadata(cls, metadata: WindowMetadata) -> "ScreenSample":
        return cls(
            window_title=metadata.window_title,
            app_name=metadata.app_name,
            url=metadata.url,
            timestamp=metadata.timestamp,
        )


class ChangeType(str, Enum):
    NONE = "none"
    INITIAL = "initial"
    APP = "app"
    TITLE = "title"
    URL = "url"
    OCR = "ocr"
    IMAGE = "image"
    RULE = "rule"
    AI = "ai"


class MatchedRuleEvidence(BaseModel):
    project_id: str
    project_name: Optional[str] = None
    rule_id: Optional[str] = None
    confidence: int = 100


class AIJudgmentEvidence(BaseModel):
    confidence: int
    reasoning: str


class ChangeDetectionResult(BaseModel):
    """Outcome of one pass through the change-detection cascade"""

    has_change: bool = False
    change_type: ChangeType = ChangeType.NONE
    layer: int = Field(default=0, ge=0, le=5)  # 0 = no change
    confidence: int = Field(default=100, ge=0, le=100)
    reasoning: Optional[str] = None
    processing_time_ms: float = 0.0
    previous_sample: Optional[ScreenSample] = None
    current_sample: ScreenSample
    ocr_text: Optional[str] = None
    image_hash: Optional[str] = None
    matched_rule: Optional[MatchedRuleEvidence] = None
    ai_judgment: Optional[AIJudgmentEvidence] = None


class ChangeJudgment(BaseModel):
    """AI Judgment Service answer to "did the work context change" """

    has_change: bool
    confidence: int = Field(ge=0, le=100)
    reasoning: str
    tokens_used: int = 0
    cost: float = 0.0


class ProjectAlternative(BaseModel):
    project_id: str
    project_name: Optional[str] = None
    score: int = Field(default=0, ge=0, le=100)


class ProjectJudgmentResult(BaseModel):
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    confidence: int = Field(default=0, ge=0, le=100)
    reasoning: str = ""
    alternatives: List[ProjectAlternative] = Field(default_factory=list)
    is_work: bool = True
    tokens_used: int = 0
    cost: float = 0.0


class RuleMatch(BaseModel):
    """Single-rule evaluation"""

    matched: bool
    matched_text: Optional[str] = None


class MatchResult(BaseModel):
    """Rule Matcher answer across a rule set"""

    matched: bool = False
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    rule: Optional[Rule] = None
    confidence: int = 0
    matched_text: Optional[str] = None


class PatternValidation(BaseModel):
    valid: bool
    error: Optional[str] = None


class SuggestedProject(BaseModel):
    id: Optional[str] = None
    name: str


class ConfirmationRequest(BaseModel):
    entry_id: str
    suggested_project: SuggestedProject
    confidence: int
    reasoning: str = ""
    alternatives: List[ProjectAlternative] = Field(default_factory=list)


class ConfirmationAction(str, Enum):
    CONFIRM = "confirm"
    CHANGE = "change"
    SPLIT = "split"


class ConfirmationResponse(BaseModel):
    entry_id: str
    action: ConfirmationAction
    new_project_id: Optional[str] = None
    split_time: Optional[datetime] = None


class TrackingStatus(BaseModel):
    is_running: bool
    is_paused: bool
    started_at: Optional[datetime] = None
    current_entry_id: Optional[str] = None
    current_project_id: Optional[str] = None
    current_project_name: Optional[str] = None
    elapsed_seconds: int = 0
    confidence: int = 0


class PasswordDetectionResult(BaseModel):
    is_password_screen: bool = False
    matched_pattern: Optional[str] = None
    match_type: Optional[Literal["title", "url", "keyword", "ocr"]] = None
    confidence: float = 0.0
