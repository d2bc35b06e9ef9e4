"""LiteLLM access for conversation agents and workflow tasks.

``LLMClient.complete`` turns a system prompt plus conversation turns into one
assistant reply. Provider failures never leak LiteLLM exception types to the
agents; they surface as ``TaskExecutionError`` tagged with the matching
``AgentErrorType``:

- Transient failures (rate limit, outage, timeout, lost connection) are
  retried with capped exponential backoff, then the fallback model is tried
  once. Exhaustion is a NETWORK_ERROR.
- Authentication failures are an INITIALIZATION_FAILED error, not retried.
- Rejected requests are a MESSAGE_PROCESSING_FAILED error, not retried.
"""

import asyncio
import time
from collections.abc import Sequence
from typing import Any

import structlog
from litellm import ModelResponse, acompletion
from litellm.exceptions import (
    APIConnectionError,
    AuthenticationError,
    BadRequestError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)
from pydantic import BaseModel

from agents.errors import AgentErrorType, TaskExecutionError
from config import Settings, settings

logger = structlog.get_logger()

_TRANSIENT_ERRORS = (RateLimitError, ServiceUnavailableError, Timeout, APIConnectionError)
_MAX_BACKOFF_SECONDS = 4.0


class LLMMetrics(BaseModel):
    """Token usage and latency of one reply."""

    model: str
    input_tokens: int
    output_tokens: int
    latency_ms: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMResponse(BaseModel):
    """One assistant reply.

    Attributes:
        content: Reply text (empty when the model returned none).
        finish_reason: Why the model stopped (stop, length, ...).
        metrics: Usage of the model that actually answered.
    """

    content: str
    finish_reason: str
    metrics: LLMMetrics


class LLMClient:
    """Produces assistant replies for one agent configuration.

    Model names, credentials and retry policy come from the ``Settings`` the
    client was built with, so agents created after a settings change pick up
    the new configuration.

    Attributes:
        model: Primary LiteLLM model name (provider-prefixed).
        fallback_model: Tried once after the primary exhausts its retries.
        max_retries: Retries on transient provider errors.
        retry_delay: Base backoff in seconds, doubled per retry.
    """

    def __init__(
        self,
        agent_settings: Settings | None = None,
        *,
        temperature: float = 0.7,
        retry_delay: float = 1.0,
    ) -> None:
        self.settings = agent_settings or settings
        self.model = self.settings.default_model
        self.fallback_model = self.settings.llm_fallback_model
        self.max_retries = self.settings.llm_max_retries
        self.temperature = temperature
        self.retry_delay = retry_delay

    async def complete(
        self,
        system_prompt: str,
        messages: Sequence[dict[str, Any]],
        *,
        agent_id: str | None = None,
    ) -> LLMResponse:
        """Reply to a conversation.

        Args:
            system_prompt: Instructions sent ahead of the conversation.
            messages: User and assistant turns, oldest first.
            agent_id: Conversation or workflow agent id for log context.

        Raises:
            TaskExecutionError: If no model produced a reply. The LiteLLM
                exception is chained as ``__cause__``.
        """
        conversation = [{"role": "system", "content": system_prompt}, *messages]
        started = time.monotonic()

        try:
            return await self._complete_with_retries(
                conversation, self.model, self.max_retries, agent_id, started
            )
        except _TRANSIENT_ERRORS as e:
            primary_error: Exception = e
        except AuthenticationError as e:
            raise self._failure(e, AgentErrorType.INITIALIZATION_FAILED, agent_id) from e
        except BadRequestError as e:
            raise self._failure(e, AgentErrorType.MESSAGE_PROCESSING_FAILED, agent_id) from e

        if self.fallback_model and self.fallback_model != self.model:
            logger.warning(
                "llm_fallback_attempt",
                agent_id=agent_id,
                primary_model=self.model,
                fallback_model=self.fallback_model,
                primary_error=str(primary_error),
            )
            try:
                return await self._complete_with_retries(
                    conversation, self.fallback_model, 0, agent_id, started
                )
            except Exception as fallback_error:
                logger.error(
                    "llm_fallback_failed",
                    agent_id=agent_id,
                    fallback_model=self.fallback_model,
                    error_type=type(fallback_error).__name__,
                    error=str(fallback_error),
                )

        raise self._failure(
            primary_error, AgentErrorType.NETWORK_ERROR, agent_id
        ) from primary_error

    async def _complete_with_retries(
        self,
        conversation: list[dict[str, Any]],
        model: str,
        retries: int,
        agent_id: str | None,
        started: float,
    ) -> LLMResponse:
        attempt = 0
        while True:
            try:
                response = await acompletion(**self._request(conversation, model))
            except _TRANSIENT_ERRORS as e:
                if attempt >= retries:
                    logger.error(
                        "llm_call_failed_all_retries",
                        model=model,
                        agent_id=agent_id,
                        attempts=attempt + 1,
                        error_type=type(e).__name__,
                    )
                    raise
                delay = min(self.retry_delay * (2 ** attempt), _MAX_BACKOFF_SECONDS)
                logger.warning(
                    "llm_call_retry",
                    model=model,
                    agent_id=agent_id,
                    attempt=attempt + 1,
                    error_type=type(e).__name__,
                    retry_delay=delay,
                )
                await self._async_sleep(delay)
                attempt += 1
                continue

            reply = self._parse_response(response, model, started)
            logger.info(
                "llm_call_complete",
                model=model,
                agent_id=agent_id,
                total_tokens=reply.metrics.total_tokens,
                latency_ms=reply.metrics.latency_ms,
                attempt=attempt + 1,
            )
            return reply

    def _request(self, conversation: list[dict[str, Any]], model: str) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": conversation,
            "temperature": self.temperature,
            "timeout": self.settings.llm_request_timeout_seconds,
        }
        if model.startswith("gemini/") and self.settings.gemini_api_key:
            kwargs["api_key"] = self.settings.gemini_api_key
        return kwargs

    @staticmethod
    def _parse_response(response: ModelResponse, model: str, started: float) -> LLMResponse:
        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=choice.message.content or "",
            finish_reason=choice.finish_reason or "unknown",
            metrics=LLMMetrics(
                model=model,
                input_tokens=usage.prompt_tokens if usage else 0,
                output_tokens=usage.completion_tokens if usage else 0,
                latency_ms=int((time.monotonic() - started) * 1000),
            ),
        )

    @staticmethod
    def _failure(
        error: Exception, error_type: AgentErrorType, agent_id: str | None
    ) -> TaskExecutionError:
        logger.error(
            "llm_call_failed",
            agent_id=agent_id,
            category=error_type.value,
            error_type=type(error).__name__,
            error=str(error),
        )
        return TaskExecutionError(
            f"LLM call failed: {error}", agent_id=agent_id, error_type=error_type
        )

    async def _async_sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class MockLLMClient(LLMClient):
    """Offline client used by ``use_mock_llm`` and by tests.

    Returns ``responses`` in order. Once they run out, every further call gets
    ``default_content``; without it an IndexError is raised.
    """

    def __init__(
        self,
        responses: list[LLMResponse] | None = None,
        default_content: str | None = None,
        agent_settings: Settings | None = None,
    ) -> None:
        super().__init__(agent_settings)
        self.responses = list(responses or [])
        self.default_content = default_content
        self.call_history: list[dict[str, Any]] = []

    async def complete(
        self,
        system_prompt: str,
        messages: Sequence[dict[str, Any]],
        *,
        agent_id: str | None = None,
    ) -> LLMResponse:
        self.call_history.append({
            "system_prompt": system_prompt,
            "messages": list(messages),
            "agent_id": agent_id,
        })
        index = len(self.call_history) - 1
        if index < len(self.responses):
            return self.responses[index]
        if self.default_content is None:
            raise IndexError("No more mock responses available")
        return LLMResponse(
            content=self.default_content,
            finish_reason="stop",
            metrics=LLMMetrics(model="mock", input_tokens=0, output_tokens=0, latency_ms=0),
        )
