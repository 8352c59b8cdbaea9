"""
Groq API client for transaction scoring completions.
"""

import time
from typing import Any, Dict, Optional

import structlog
from groq import NOT_GIVEN, AsyncGroq

from ..cancellation import CancellationToken
from ..config import Settings, get_settings
from ..errors import LLMConfigError
from ..metrics import llm_calls_total

logger = structlog.get_logger(__name__)

JSON_RESPONSE_FORMAT = {"type": "json_object"}


class GroqLLMClient:
    """
    Async Groq client producing a single completion per call.

    Calls are single-attempt; the caller decides what a failure means. With
    ``json_mode`` on, Groq is asked for a JSON object response.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        json_mode: bool = True,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.api_key = api_key or settings.GROQ_API_KEY
        self.model = model or settings.GROQ_MODEL
        self.temperature = settings.LLM_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or settings.LLM_MAX_TOKENS
        self.json_mode = json_mode
        self._client: Optional[AsyncGroq] = None
        self.last_metadata: Dict[str, Any] = {}

    @property
    def client(self) -> AsyncGroq:
        if not self.api_key:
            raise LLMConfigError("GROQ_API_KEY is not configured")
        if self._client is None:
            self._client = AsyncGroq(api_key=self.api_key)
        return self._client

    async def complete(
        self,
        system: str,
        user: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        """
        Send a system + user message pair and return the raw completion text.

        Raises:
            LLMConfigError: If no API key is configured
            CancelledRunError: If the run was cancelled before the call
        """
        client = self.client
        if cancel is not None:
            cancel.raise_if_cancelled()

        start_time = time.time()
        try:
            completion = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format=JSON_RESPONSE_FORMAT if self.json_mode else NOT_GIVEN,
            )
        except Exception as e:
            llm_calls_total.labels(status="error").inc()
            logger.error("Groq API error", model=self.model, error=str(e))
            raise

        latency_ms = int((time.time() - start_time) * 1000)
        response_text = completion.choices[0].message.content or ""
        usage = completion.usage

        self.last_metadata = {
            "input_tokens": usage.prompt_tokens if usage else 0,
            "output_tokens": usage.completion_tokens if usage else 0,
            "latency_ms": latency_ms,
            "finish_reason": completion.choices[0].finish_reason,
            "model": self.model,
        }
        llm_calls_total.labels(status="success").inc()
        logger.info(
            "Groq completion successful",
            model=self.model,
            latency_ms=latency_ms,
            finish_reason=self.last_metadata["finish_reason"],
        )
        return response_text
