"""
Data entity model definitions
Projects, rules and work entries as seen by the tracking core
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from .base import BaseModel


class RuleType(str, Enum):
    APP_NAME = "app_name"
    WINDOW_TITLE = "window_title"
    URL = "url"
    KEYWORD = "keyword"


class Project(BaseModel):
    """Billable project"""

    id: str
    name: str
    client_name: Optional[str] = None
    hourly_rate: Optional[float] = None
    color: Optional[str] = None
    is_archived: bool = False
    created_at: Optional[datetime] = None


class Rule(BaseModel):
    """User-authored deterministic classification rule"""

    id: str
    project_id: str
    rule_type: RuleType
    pattern: str
    priority: int = 0  # higher wins
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WorkEntry(BaseModel):
    """Contiguous span of tracked time; end_time None means ongoing"""

    id: str
    project_id: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    confidence: int = Field(default=0, ge=0, le=100)
    reasoning: Optional[str] = None
    subtask: Optional[str] = None
    is_manual: bool = False
    is_work: bool = True

    @property
    def is_ongoing(self) -> bool:
        return self.end_time is None

    def duration_seconds(self, now: Optional[datetime] = None) -> float:
        end = self.end_time or now
        if end is None:
            return 0.0
        return (end - self.start_time).total_seconds()


class SplitResult(BaseModel):
    before: WorkEntry
    after: WorkEntry
