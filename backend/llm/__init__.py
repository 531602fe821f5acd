"""
LLM module

All reasoning-service traffic goes through LLMClient, which serialises
calls through a RequestQueue and records their cost to the usage ledger.
"""

from .client import (
    MODEL_PRICING,
    ChatCompletionResult,
    LLMClient,
    LLMNotConfiguredError,
    calculate_cost,
)
from .request_queue import QueueClearedError, RequestQueue, is_retryable_error

__all__ = [
    "MODEL_PRICING",
    "ChatCompletionResult",
    "LLMClient",
    "LLMNotConfiguredError",
    "calculate_cost",
    "QueueClearedError",
    "RequestQueue",
    "is_retryable_error",
]
