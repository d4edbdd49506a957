import asyncio
import logging
from typing import Callable, Optional, TypeVar

from aiolimiter import AsyncLimiter
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    OpenAIError,
    RateLimitError
)
from openai.types.chat import ChatCompletionUserMessageParam

from nexti18n.ai_contracts import TaskKind, describe_violation
from nexti18n.errors import ContractViolationError, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Structured outputs are machine-parsed, so sampling stays near-deterministic
# for every task. Not configurable per call.
TEMPERATURE = 0.1

DEFAULT_MAX_RETRIES = 2


class CompletionClient:
    """
    Executes one prompt against the chat-completion endpoint and returns a
    contract-validated result.

    The OpenAI client is injected; any object exposing an awaitable
    ``chat.completions.create(...)`` works. A single semaphore caps the number
    of requests in flight across every caller sharing this instance.
    """

    def __init__(
            self,
            openai_client,
            model_name: str,
            max_concurrent_requests: int = 20,
            max_output_tokens: int = 4000,
            request_timeout: float = 60.0,
            rate_limiter: Optional[AsyncLimiter] = None
    ):
        if max_concurrent_requests < 1:
            raise ValueError("max_concurrent_requests must be at least 1")
        self._openai_client = openai_client
        self.model_name = model_name
        self.max_concurrent_requests = max_concurrent_requests
        self.max_output_tokens = max_output_tokens
        self.request_timeout = request_timeout
        self._rate_limiter = rate_limiter
        self._semaphore = asyncio.Semaphore(max_concurrent_requests)
        self.in_flight = 0
        self.peak_in_flight = 0
        self.request_count = 0

    @classmethod
    def from_config(cls, config, openai_client) -> "CompletionClient":
        rate_limiter = None
        if config.rate_limit_per_minute > 0:
            rate_limiter = AsyncLimiter(max_rate=config.rate_limit_per_minute, time_period=60)
        return cls(
            openai_client,
            model_name=config.model_name,
            max_concurrent_requests=config.max_concurrent_api_calls,
            max_output_tokens=config.max_output_tokens,
            request_timeout=config.request_timeout_seconds,
            rate_limiter=rate_limiter
        )

    async def _send(self, prompt: str):
        if self._rate_limiter is not None:
            async with self._rate_limiter:
                return await self._create(prompt)
        return await self._create(prompt)

    async def _create(self, prompt: str):
        return await asyncio.wait_for(
            self._openai_client.chat.completions.create(
                model=self.model_name,
                messages=[ChatCompletionUserMessageParam(role="user", content=prompt)],
                temperature=TEMPERATURE,
                max_tokens=self.max_output_tokens,
                timeout=self.request_timeout,
            ),
            timeout=self.request_timeout
        )

    async def _request(self, task: TaskKind, subject: str, prompt: str) -> str:
        """One round trip. Every failure to obtain a completion becomes a ``TransportError``."""
        async with self._semaphore:
            self.in_flight += 1
            self.request_count += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                response = await self._send(prompt)
            except asyncio.TimeoutError as timeout_exc:
                logger.error("%s request for '%s' timed out after %.1fs.", task.value, subject, self.request_timeout)
                raise TransportError(task.value, subject, timeout_exc) from timeout_exc
            except (RateLimitError, APITimeoutError, APIConnectionError, APIStatusError, OpenAIError) as api_exc:
                logger.error("API error during %s for '%s': %s - %s",
                             task.value, subject, api_exc.__class__.__name__, api_exc)
                raise TransportError(task.value, subject, api_exc) from api_exc
            finally:
                self.in_flight -= 1

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError):
            content = None
        return content or ""

    async def complete(
            self,
            task: TaskKind,
            subject: str,
            prompt: str,
            parse: Callable[[str, str], T],
            retry_prompt: Optional[Callable[[str], str]] = None,
            max_retries: int = DEFAULT_MAX_RETRIES
    ) -> T:
        """
        Send ``prompt`` and return ``parse(completion_text, subject)``.

        When ``parse`` raises ``ContractViolationError`` the request is issued
        again, with ``retry_prompt(reason)`` as the instruction if given, up to
        ``max_retries`` extra attempts.

        Args:
            task: The task kind, used in logs and errors.
            subject: What the request is about (file path, locale, key).
            prompt: The instruction with the contract and payload embedded.
            parse: Validating parse step for the task's response shape.
            retry_prompt: Builds the correction instruction from the violation reason.
            max_retries: Extra attempts after the first one.

        Returns:
            The parsed, validated result.

        Raises:
            TransportError: On the first transport failure, without retrying.
            ContractViolationError: When every attempt violated the contract.
        """
        attempts = max_retries + 1
        current_prompt = prompt
        last_violation: Optional[ContractViolationError] = None

        for attempt in range(1, attempts + 1):
            raw_text = await self._request(task, subject, current_prompt)
            try:
                if not raw_text.strip():
                    raise ContractViolationError(task.value, subject, "empty completion", raw_text)
                result = parse(raw_text, subject)
            except ContractViolationError as violation:
                last_violation = violation
                if attempt < attempts:
                    logger.warning("Attempt %d/%d for %s '%s' was invalid (%s). Retrying with a correction prompt.",
                                   attempt, attempts, task.value, subject, violation.reason)
                    logger.debug("Invalid response:\n---\n%s\n---", raw_text)
                    if retry_prompt is not None:
                        current_prompt = retry_prompt(describe_violation(violation))
                continue
            if attempt > 1:
                logger.info("%s '%s' succeeded on attempt %d/%d.", task.value, subject, attempt, attempts)
            return result

        logger.error("%s '%s' failed the response contract after %d attempts: %s",
                     task.value, subject, attempts, last_violation.reason)
        raise last_violation
