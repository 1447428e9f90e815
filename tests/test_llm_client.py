"""Tests for the multi-provider LLM client (provider SDKs mocked)."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from services.config import LLMProvider
from services.llm import LLMClient


@pytest.fixture
def llm_settings(settings):
    return settings.model_copy(update={"llm_max_retries": 2, "llm_retry_delay_seconds": 0.0})


def claude_client(text: str = "from claude", error: Exception | None = None) -> MagicMock:
    client = MagicMock()
    if error is not None:
        client.messages.create = AsyncMock(side_effect=error)
    else:
        client.messages.create = AsyncMock(
            return_value=SimpleNamespace(
                content=[SimpleNamespace(text=text)],
                usage=SimpleNamespace(input_tokens=5, output_tokens=3),
            )
        )
    return client


def openai_client(text: str = "from openai") -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
            usage=SimpleNamespace(prompt_tokens=7, completion_tokens=2),
        )
    )
    return client


class TestLLMClient:

    async def test_default_provider(self, llm_settings):
        claude = claude_client()
        llm = LLMClient(llm_settings, clients={LLMProvider.CLAUDE: claude})

        response = await llm.complete(
            [{"role": "user", "content": "hi"}], session_id="s1", system="be brief"
        )

        assert response.success
        assert response.text == "from claude"
        assert response.session_id == "s1"
        assert response.usage["total_tokens"] == 8
        assert claude.messages.create.call_args.kwargs["system"] == "be brief"

    async def test_retry_then_fallback(self, llm_settings):
        claude = claude_client(error=RuntimeError("overloaded"))
        llm = LLMClient(
            llm_settings,
            clients={LLMProvider.CLAUDE: claude, LLMProvider.OPENAI: openai_client()},
        )

        response = await llm.complete([{"role": "user", "content": "hi"}])

        assert response.provider == LLMProvider.OPENAI
        assert response.text == "from openai"
        assert claude.messages.create.await_count == 2

    async def test_openai_receives_system_message(self, llm_settings):
        openai = openai_client()
        llm = LLMClient(llm_settings, clients={LLMProvider.OPENAI: openai})
        await llm.complete(
            [{"role": "user", "content": "hi"}], system="be brief", provider=LLMProvider.OPENAI
        )
        messages = openai.chat.completions.create.call_args.kwargs["messages"]
        assert messages[0] == {"role": "system", "content": "be brief"}

    async def test_total_failure_is_a_response(self, llm_settings):
        llm = LLMClient(llm_settings, clients={})
        response = await llm.complete([{"role": "user", "content": "hi"}])
        assert not response.success
        assert "ConnectionError" in response.error
        assert llm.stats["total_calls"] == 1

    def test_reset_without_keys(self, llm_settings):
        llm = LLMClient(llm_settings, clients={LLMProvider.CLAUDE: claude_client()})
        assert llm.reset() == []
        assert llm.available_providers == []
