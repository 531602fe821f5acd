"""
Base model configuration
Shared pydantic base plus the AI usage ledger models
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel as PydanticBaseModel
from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel


class BaseModel(PydanticBaseModel):
    """Base model with camelCase aliases for UI consumers.

    - Accepts camelCase arguments for snake_case python fields
    - Forbids unknown fields to ensure type safety
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        # Allow populating by both field name and alias
        populate_by_name=True,
        extra="forbid",
    )

    def model_dump(self, **kwargs):
        """Override model_dump to always use aliases (camelCase) by default."""
        kwargs.setdefault("by_alias", True)
        return super().model_dump(**kwargs)

    def model_dump_json(self, **kwargs):
        """Override model_dump_json to always use aliases (camelCase) by default."""
        kwargs.setdefault("by_alias", True)
        return super().model_dump_json(**kwargs)


class AIUsageLog(BaseModel):
    """One recorded call to the reasoning service"""

    id: Optional[int] = None
    model: str
    tokens_in: int
    tokens_out: int
    cost: float
    request_type: Optional[str] = None  # 'change_detection', 'project_judgment', ...
    created_at: datetime


class ModelUsage(BaseModel):
    model: str
    tokens_in: int = 0
    tokens_out: int = 0
    cost: float = 0.0
    request_count: int = 0


class MonthlyUsage(BaseModel):
    """Aggregate spend for one calendar month (YYYY-MM)"""

    month: str
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_cost: float = 0.0
    request_count: int = 0
    by_model: List[ModelUsage] = Field(default_factory=list)


class DailyUsage(BaseModel):
    date: str
    tokens_in: int = 0
    tokens_out: int = 0
    cost: float = 0.0
    request_count: int = 0


class BudgetStatus(BaseModel):
    monthly_budget: float
    current_usage: float
    remaining: float
    percent_used: float
    is_over_budget: bool
