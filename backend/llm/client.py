"""
Chat-completion client

Wraps openai.AsyncOpenAI. Every call is funnelled through the RequestQueue
and every successful call is written to the usage ledger with its cost.
"""

from typing import Any, Callable, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from core.logger import get_logger
from models.base import BaseModel

from .request_queue import RequestQueue

logger = get_logger(__name__)

# USD per 1M tokens
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4o": {"input": 2.5, "output": 10.0},
    "gpt-5-nano": {"input": 0.05, "output": 0.20},
    "gpt-5-mini": {"input": 0.10, "output": 0.40},
}
DEFAULT_MODEL = "gpt-4o-mini"


class LLMNotConfiguredError(RuntimeError):
    """No API key has been configured"""


class ChatCompletionResult(BaseModel):
    content: str
    tokens_in: int = 0
    tokens_out: int = 0
    cost: float = 0.0
    model: str
    finish_reason: str = "unknown"

    @property
    def tokens_used(self) -> int:
        return self.tokens_in + self.tokens_out


def calculate_cost(model: str, tokens_in: int, tokens_out: int) -> float:
    """Unknown models are priced as the default model"""
    pricing = MODEL_PRICING.get(model, MODEL_PRICING[DEFAULT_MODEL])
    return (tokens_in / 1_000_000) * pricing["input"] + (
        tokens_out / 1_000_000
    ) * pricing["output"]


class LLMClient:
    """
    Reasoning-service client

    Args:
        api_key: OpenAI API key ("" means not configured)
        request_queue: Queue every completion goes through
        usage_ledger: Anything with an async record(model, tokens_in,
            tokens_out, cost, request_type) method
        client_factory: Builds the underlying SDK client; defaults to
            AsyncOpenAI and is swapped for a fake in tests
    """

    def __init__(
        self,
        api_key: str = "",
        *,
        request_queue: RequestQueue,
        usage_ledger: Optional[Any] = None,
        base_url: Optional[str] = None,
        organization: Optional[str] = None,
        models: Optional[Dict[str, str]] = None,
        client_factory: Optional[Callable[..., Any]] = None,
    ):
        self.api_key = api_key or ""
        self.base_url = base_url or None
        self.organization = organization or None
        self.request_queue = request_queue
        self.usage_ledger = usage_ledger
        self.models: Dict[str, str] = {
            "change_detection": DEFAULT_MODEL,
            "project_judgment": DEFAULT_MODEL,
        }
        if models:
            self.models.update(models)
        self._client_factory = client_factory or AsyncOpenAI
        self._client: Optional[Any] = None

    def has_api_key(self) -> bool:
        return bool(self.api_key)

    def set_api_key(self, api_key: str) -> None:
        self.api_key = api_key or ""
        self._client = None
        logger.info("API key updated")

    def clear_api_key(self) -> None:
        self.api_key = ""
        self._client = None
        logger.info("API key cleared")

    def set_organization(self, organization: Optional[str]) -> None:
        self.organization = organization or None
        self._client = None

    def set_models(self, **models: str) -> None:
        self.models.update({k: v for k, v in models.items() if v})

    def get_model(self, request_type: str) -> str:
        return self.models.get(request_type, DEFAULT_MODEL)

    @staticmethod
    def get_available_models() -> List[str]:
        return list(MODEL_PRICING.keys())

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise LLMNotConfiguredError("OpenAI API key is not configured")
            # Retries are owned by the request queue
            self._client = self._client_factory(
                api_key=self.api_key,
                base_url=self.base_url,
                organization=self.organization,
                max_retries=0,
            )
        return self._client

    async def chat_completion(
        self,
        messages: List[Dict[str, str]],
        *,
        model: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 500,
        request_type: Optional[str] = None,
    ) -> ChatCompletionResult:
        """
        Send a chat completion through the request queue

        Raises:
            LLMNotConfiguredError: no API key
            openai.OpenAIError: once the queue has given up on the call
        """
        model = model or self.get_model(request_type or "project_judgment")
        client = self._get_client()

        async def _call():
            return await client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )

        response = await self.request_queue.enqueue(_call)

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        tokens_in = getattr(usage, "prompt_tokens", 0) or 0
        tokens_out = getattr(usage, "completion_tokens", 0) or 0
        cost = calculate_cost(model, tokens_in, tokens_out)

        if self.usage_ledger is not None:
            try:
                await self.usage_ledger.record(
                    model, tokens_in, tokens_out, cost, request_type
                )
            except Exception as e:
                logger.error(f"Failed to record AI usage: {e}", exc_info=True)

        logger.debug(
            f"LLM call ({request_type}) {model}: in={tokens_in} out={tokens_out} cost=${cost:.6f}"
        )
        return ChatCompletionResult(
            content=choice.message.content or "",
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost=cost,
            model=model,
            finish_reason=getattr(choice, "finish_reason", None) or "unknown",
        )

    async def test_api_key(self) -> Dict[str, Any]:
        """List models with the configured key; 401 means the key is invalid"""
        try:
            client = self._get_client()
            await client.models.list()
            return {"valid": True, "error": None}
        except openai.AuthenticationError:
            return {"valid": False, "error": "Invalid API key"}
        except Exception as e:
            if getattr(e, "status_code", None) == 401:
                return {"valid": False, "error": "Invalid API key"}
            return {"valid": False, "error": str(e)}
