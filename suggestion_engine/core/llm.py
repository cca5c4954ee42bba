"""Text-generation clients and LLM response parsing utilities.

The pipeline treats the language model as an opaque completion capability:

    text = await generator.complete(system_prompt, user_prompt, temperature=0.3, max_tokens=512)

Two providers are supported (Anthropic SDK, LangChain ChatOpenAI). Both share
the same retry policy: up to ``max_attempts`` tries with linear backoff
(``base_delay * attempt``) on transport failures and non-2xx responses.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Awaitable, Callable
from typing import Any

from suggestion_engine.core.config import Settings, get_settings
from suggestion_engine.core.logging import get_logger

logger = get_logger(__name__)

_PLACEHOLDER_KEYS = {"", "your_api_key_here"}


class LLMConfigurationError(RuntimeError):
    """Generation credentials or provider settings are missing or invalid."""


class LLMRequestError(RuntimeError):
    """A generation call failed after exhausting its retries."""


class LLMResponseError(ValueError):
    """A generation response could not be parsed into the expected shape."""


# =============================================================================
# Response parsing
# =============================================================================


def strip_llm_fences(raw_output: str) -> str:
    """Strip markdown code fences from LLM output.

    Handles: ```json ... ```, ``` ... ```, leading/trailing whitespace.
    """
    cleaned = raw_output.strip()

    fence_match = re.search(r"```(?:json)?\s*\n?(.*?)```", cleaned, re.DOTALL)
    if fence_match:
        return fence_match.group(1).strip()

    # Unterminated fences
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_llm_json_dict(raw_output: str) -> Any:
    """
    Parse LLM output as JSON after one round of fence stripping.

    Args:
        raw_output: Raw string from LLM response

    Returns:
        Parsed JSON value (dict or list)

    Raises:
        LLMResponseError: If the cleaned text is not valid JSON
    """
    cleaned = strip_llm_fences(raw_output)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise LLMResponseError(f"Unparsable JSON in LLM response: {e}") from e


# =============================================================================
# Retry policy
# =============================================================================


async def call_with_retries(
    call: Callable[[], Awaitable[str]],
    *,
    max_attempts: int,
    base_delay: float,
    retry_on: tuple[type[BaseException], ...],
    label: str = "generation",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> str:
    """Run ``call`` with linear backoff between attempts.

    Raises:
        LLMRequestError: After ``max_attempts`` retryable failures
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: BaseException | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await call()
        except retry_on as e:
            last_error = e
            if attempt < max_attempts:
                delay = base_delay * attempt
                logger.warning(
                    f"{label} attempt {attempt}/{max_attempts} failed "
                    f"({type(e).__name__}), retrying in {delay}s"
                )
                await sleep(delay)

    raise LLMRequestError(
        f"{label} failed after {max_attempts} attempts: {last_error}"
    ) from last_error


# =============================================================================
# Providers
# =============================================================================


class AnthropicTextGenerator:
    """Completion capability backed by the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        timeout: float = 60.0,
        client: Any | None = None,
    ):
        if not api_key or api_key in _PLACEHOLDER_KEYS:
            raise LLMConfigurationError("ANTHROPIC_API_KEY not configured")

        if client is None:
            from anthropic import AsyncAnthropic

            client = AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=0)

        self.client = client
        self.model = model
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.3,
        max_tokens: int = 1024,
    ) -> str:
        from anthropic import APIConnectionError, APIStatusError

        async def _once() -> str:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                temperature=temperature,
            )
            texts = [block.text for block in response.content if getattr(block, "type", "") == "text"]
            if not texts:
                raise LLMResponseError("No text block in Anthropic response")
            return "".join(texts)

        return await call_with_retries(
            _once,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            retry_on=(APIConnectionError, APIStatusError),
            label=f"anthropic:{self.model}",
        )


class OpenAITextGenerator:
    """Completion capability backed by LangChain's ChatOpenAI."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        timeout: float = 60.0,
    ):
        if not api_key or api_key in _PLACEHOLDER_KEYS:
            raise LLMConfigurationError("OPENAI_API_KEY not configured")

        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    def _get_llm(self, temperature: float, max_tokens: int):
        from langchain_openai import ChatOpenAI

        # Retries are owned by call_with_retries, not the SDK
        return ChatOpenAI(
            api_key=self.api_key,
            model=self.model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=self.timeout,
            max_retries=0,
        )

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.3,
        max_tokens: int = 1024,
    ) -> str:
        from langchain_core.messages import HumanMessage, SystemMessage
        from openai import APIConnectionError, APIStatusError

        llm = self._get_llm(temperature, max_tokens)
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]

        async def _once() -> str:
            response = await llm.ainvoke(messages)
            content = response.content
            if isinstance(content, list):
                content = "".join(
                    part.get("text", "") if isinstance(part, dict) else str(part) for part in content
                )
            if not content:
                raise LLMResponseError("Empty OpenAI response")
            return content

        return await call_with_retries(
            _once,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            retry_on=(APIConnectionError, APIStatusError),
            label=f"openai:{self.model}",
        )


def get_text_generator(settings: Settings | None = None):
    """
    Build the configured text generator.

    Raises:
        LLMConfigurationError: If the provider is unknown or its key is missing
    """
    settings = settings or get_settings()
    provider = settings.LLM_PROVIDER.lower()

    if provider == "anthropic":
        return AnthropicTextGenerator(
            api_key=settings.ANTHROPIC_API_KEY or "",
            model=settings.ANTHROPIC_MODEL,
            max_attempts=settings.LLM_MAX_ATTEMPTS,
            base_delay=settings.LLM_RETRY_BASE_SECONDS,
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )
    if provider == "openai":
        return OpenAITextGenerator(
            api_key=settings.OPENAI_API_KEY or "",
            model=settings.OPENAI_MODEL,
            max_attempts=settings.LLM_MAX_ATTEMPTS,
            base_delay=settings.LLM_RETRY_BASE_SECONDS,
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )

    raise LLMConfigurationError(f"Unknown LLM_PROVIDER: {settings.LLM_PROVIDER}")
