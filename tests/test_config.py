"""Tests for configuration, prompts and the LLM client."""

import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
import yaml

from commentlens.config import Config, LLMConfig, LLMCredentials, load_config
from commentlens.llm_client import (
    APIKeyError,
    LLMClient,
    LLMClientError,
    LLMTimeoutError,
    get_llm_client,
)
from commentlens.models import Keyword, Sentiment, SentimentBreakdown
from commentlens.prompts import (
    SENTIMENT_BATCH,
    SUMMARY_NARRATIVE,
    build_sentiment_params,
    build_summary_params,
)

KEYS = LLMCredentials(gemini_api_key="test-key")


class TestConfig:
    """Tests for YAML loading."""

    def test_defaults(self):
        config = Config()
        assert config.jobs.max_concurrent_jobs == 3
        assert config.cache.ttl_seconds == 3600
        assert config.sentiment.batch_size == 10
        assert config.summary.min_words == 75

    def test_load_overrides_and_ignores_unknown_keys(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "jobs": {"max_concurrent_jobs": 5, "surprise": True},
            "cache": {"ttl_seconds": 60},
        }))
        config = load_config(path)

        assert config.jobs.max_concurrent_jobs == 5
        assert config.jobs.max_attempts == 3
        assert config.cache.ttl_seconds == 60
        assert config.llm.provider == "gemini"

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path).database.path == "./comment_lens.db"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_shipped_default_config_loads(self):
        config = load_config(Path(__file__).parent.parent / "config" / "default.yaml")
        assert config.themes.similarity_threshold == 0.15
        assert config.analysis.result_retention_days == 7

    def test_credentials_by_provider(self):
        assert KEYS.has_key_for_provider("gemini")
        assert not KEYS.has_key_for_provider("openai")
        assert KEYS.get_key_for_provider("unknown") == ""


class TestPrompts:
    """Tests for prompt rendering."""

    def test_sentiment_prompt_numbers_comments(self, make_comments):
        comments = make_comments(["first  comment\nhere", "second one"])
        prompt = SENTIMENT_BATCH.render(build_sentiment_params(comments))

        assert "following 2 social media comments" in prompt
        assert '1. "first comment here"' in prompt
        assert '2. "second one"' in prompt
        assert '{"commentIndex": 1' in prompt

    def test_summary_prompt_without_themes(self):
        keywords = [Keyword("pasta", 4, Sentiment.POSITIVE, 0.2, 1.0)]
        params = build_summary_params(SentimentBreakdown(0.5, 0.25, 0.25), [], keywords, 8)
        prompt = SUMMARY_NARRATIVE.render(params)

        assert "Positive: 50.0%" in prompt
        assert "- (no recurring themes)" in prompt
        assert "Top keywords: pasta" in prompt
        assert "between 75 and 150 words" in prompt


class TestLLMClient:
    """Tests for client construction and calls."""

    def test_disabled_model(self):
        assert get_llm_client(LLMConfig(enabled=False), KEYS) is None

    def test_missing_key(self):
        assert get_llm_client(LLMConfig(provider="openai"), KEYS) is None

    def test_configured_client(self):
        client = get_llm_client(LLMConfig(timeout_seconds=5), KEYS)
        assert isinstance(client, LLMClient)
        assert client.timeout_seconds == 5

    def test_unknown_provider(self):
        with pytest.raises(LLMClientError):
            LLMClient(provider="mystery", api_key="key")

    def test_empty_key(self):
        with pytest.raises(APIKeyError):
            LLMClient(provider="gemini", api_key="")

    def test_complete_returns_text(self):
        client = LLMClient(api_key="key")
        response = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="hello"))],
            usage=SimpleNamespace(prompt_tokens=3, completion_tokens=1, total_tokens=4),
        )
        client._client = SimpleNamespace(
            chat=SimpleNamespace(completions=SimpleNamespace(create=AsyncMock(return_value=response)))
        )

        assert asyncio.run(client.complete("hi")) == "hello"
        kwargs = client._client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]

    def test_call_timeout(self):
        client = LLMClient(api_key="key", timeout_seconds=0.01)

        async def slow(**kwargs):
            await asyncio.sleep(1)

        client._client = SimpleNamespace(
            chat=SimpleNamespace(completions=SimpleNamespace(create=slow))
        )
        with pytest.raises(LLMTimeoutError):
            asyncio.run(client.complete("hi"))

    def test_provider_errors_are_wrapped(self):
        client = LLMClient(api_key="key")
        client._client = SimpleNamespace(
            chat=SimpleNamespace(completions=SimpleNamespace(
                create=AsyncMock(side_effect=RuntimeError("503"))
            ))
        )
        with pytest.raises(LLMClientError, match="503"):
            asyncio.run(client.complete("hi"))
