"""Tests for text-generation clients, retry policy and response parsing."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from suggestion_engine.core.config import Settings
from suggestion_engine.core.llm import (
    AnthropicTextGenerator,
    LLMConfigurationError,
    LLMRequestError,
    LLMResponseError,
    OpenAITextGenerator,
    call_with_retries,
    get_text_generator,
    parse_llm_json_dict,
    strip_llm_fences,
)


class TestStripFences:
    def test_json_fence(self):
        assert strip_llm_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_fence(self):
        assert strip_llm_fences('```\n[1, 2]\n```') == "[1, 2]"

    def test_fence_with_surrounding_text(self):
        assert strip_llm_fences('Here you go:\n```json\n{"a": 1}\n```\nDone') == '{"a": 1}'

    def test_unterminated_fence(self):
        assert strip_llm_fences('```json\n{"a": 1}') == '{"a": 1}'

    def test_no_fence(self):
        assert strip_llm_fences('  {"a": 1}  ') == '{"a": 1}'


class TestParseJson:
    def test_parses_fenced_dict(self):
        assert parse_llm_json_dict('```json\n{"decision": "SKIP"}\n```') == {"decision": "SKIP"}

    def test_invalid_json_raises(self):
        with pytest.raises(LLMResponseError):
            parse_llm_json_dict("not json at all")


class TestCallWithRetries:
    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        call = AsyncMock(return_value="ok")
        sleep = AsyncMock()

        result = await call_with_retries(call, max_attempts=3, base_delay=1.0, retry_on=(ConnectionError,), sleep=sleep)

        assert result == "ok"
        assert call.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_linear_backoff_then_success(self):
        call = AsyncMock(side_effect=[ConnectionError("down"), ConnectionError("down"), "ok"])
        sleep = AsyncMock()

        result = await call_with_retries(call, max_attempts=3, base_delay=1.0, retry_on=(ConnectionError,), sleep=sleep)

        assert result == "ok"
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_raises_after_exhausting_attempts(self):
        call = AsyncMock(side_effect=ConnectionError("down"))
        sleep = AsyncMock()

        with pytest.raises(LLMRequestError):
            await call_with_retries(call, max_attempts=3, base_delay=0.5, retry_on=(ConnectionError,), sleep=sleep)

        assert call.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates(self):
        call = AsyncMock(side_effect=KeyError("bad"))

        with pytest.raises(KeyError):
            await call_with_retries(call, max_attempts=3, base_delay=0.0, retry_on=(ConnectionError,))

        assert call.await_count == 1

    @pytest.mark.asyncio
    async def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            await call_with_retries(AsyncMock(), max_attempts=0, base_delay=0.0, retry_on=(ConnectionError,))


class TestAnthropicTextGenerator:
    def test_missing_key_raises(self):
        with pytest.raises(LLMConfigurationError):
            AnthropicTextGenerator(api_key="", model="test-model")

    @pytest.mark.asyncio
    async def test_joins_text_blocks(self):
        client = MagicMock()
        client.messages.create = AsyncMock(
            return_value=SimpleNamespace(
                content=[
                    SimpleNamespace(type="text", text='{"a": '),
                    SimpleNamespace(type="text", text="1}"),
                ]
            )
        )
        generator = AnthropicTextGenerator(api_key="key", model="test-model", client=client)

        result = await generator.complete("system", "user", temperature=0.2, max_tokens=64)

        assert result == '{"a": 1}'
        kwargs = client.messages.create.await_args.kwargs
        assert kwargs["system"] == "system"
        assert kwargs["messages"] == [{"role": "user", "content": "user"}]
        assert kwargs["temperature"] == 0.2
        assert kwargs["max_tokens"] == 64

    @pytest.mark.asyncio
    async def test_no_text_block_raises(self):
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=SimpleNamespace(content=[]))
        generator = AnthropicTextGenerator(api_key="key", model="test-model", client=client)

        with pytest.raises(LLMResponseError):
            await generator.complete("system", "user")


class TestGetTextGenerator:
    def test_anthropic_provider(self):
        settings = Settings(LLM_PROVIDER="anthropic", ANTHROPIC_API_KEY="key")
        assert isinstance(get_text_generator(settings), AnthropicTextGenerator)

    def test_openai_provider(self):
        settings = Settings(LLM_PROVIDER="openai", OPENAI_API_KEY="key")
        assert isinstance(get_text_generator(settings), OpenAITextGenerator)

    def test_missing_key(self):
        settings = Settings(LLM_PROVIDER="openai", OPENAI_API_KEY="")
        with pytest.raises(LLMConfigurationError):
            get_text_generator(settings)

    def test_unknown_provider(self):
        with pytest.raises(LLMConfigurationError):
            get_text_generator(Settings(LLM_PROVIDER="cohere"))
