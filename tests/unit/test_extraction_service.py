"""
Unit Tests for ExtractionService

Tests the OpenAI call, the bounded retry policy and error mapping with a
mocked client.
"""

import httpx
import openai
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from services.exceptions import ExtractionUnavailableError
from services.extraction_service import ExtractionService
from utils.retry_utils import exponential_backoff


def make_completion(content, finish_reason="stop"):
    """Build a chat completion response shaped like the SDK's."""
    completion = MagicMock()
    completion.choices = [MagicMock(finish_reason=finish_reason, message=MagicMock(content=content))]
    return completion


def make_timeout():
    return openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))


def make_bad_request():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return openai.BadRequestError(
        "invalid model", response=httpx.Response(400, request=request), body=None
    )


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.chat.completions.create = AsyncMock()
    return client


@pytest.fixture
def service(mock_client):
    service = ExtractionService(client=mock_client, model="gpt-4o", timeout=30, max_attempts=3)
    service.backoff = exponential_backoff(base=0)
    return service


class TestExtract:
    """Tests for ExtractionService.extract."""

    @pytest.mark.asyncio
    async def test_returns_raw_content(self, service, mock_client):
        mock_client.chat.completions.create.return_value = make_completion('{"mainPain": "Slow CI"}')

        result = await service.extract("Customer: our CI is slow", purpose="Discovery")

        assert result == '{"mainPain": "Slow CI"}'
        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["temperature"] == 0.2
        assert kwargs["timeout"] == 30
        assert kwargs["messages"][0]["role"] == "system"
        assert kwargs["messages"][1]["content"].startswith("Meeting purpose: Discovery")
        assert "our CI is slow" in kwargs["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_empty_content_returns_empty_string(self, service, mock_client):
        mock_client.chat.completions.create.return_value = make_completion(None, finish_reason="length")

        assert await service.extract("hello") == ""

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, service, mock_client):
        mock_client.chat.completions.create.side_effect = [
            make_timeout(),
            make_completion('{"mainPain": "x"}'),
        ]

        result = await service.extract("transcript")

        assert result == '{"mainPain": "x"}'
        assert mock_client.chat.completions.create.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_budget_is_bounded(self, service, mock_client):
        mock_client.chat.completions.create.side_effect = make_timeout()

        with pytest.raises(ExtractionUnavailableError) as exc_info:
            await service.extract("transcript")

        assert mock_client.chat.completions.create.await_count == 3
        assert exc_info.value.status_code == 502
        assert "3 attempts" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_immediately(self, service, mock_client):
        mock_client.chat.completions.create.side_effect = make_bad_request()

        with pytest.raises(ExtractionUnavailableError):
            await service.extract("transcript")

        assert mock_client.chat.completions.create.await_count == 1


class TestConfiguration:
    """Tests for environment-driven defaults."""

    def test_missing_api_key_raises(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        with pytest.raises(ValueError, match="OPENAI_API_KEY"):
            ExtractionService()

    def test_defaults_from_environment(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("OPENAI_MODEL", "gpt-4o-mini")
        monkeypatch.setenv("EXTRACTION_MAX_ATTEMPTS", "5")
        monkeypatch.delenv("EXTRACTION_TIMEOUT_SECONDS", raising=False)

        with patch("services.extraction_service.AsyncOpenAI") as mock_openai:
            service = ExtractionService()

        mock_openai.assert_called_once_with(api_key="sk-test", max_retries=0)
        assert service.model == "gpt-4o-mini"
        assert service.max_attempts == 5
        assert service.timeout == 180

    def test_prompt_lists_every_output_key(self, service):
        prompt = service._get_system_prompt()

        for key in ("mainPain", "followUps", "additionalPainPoints", "opportunities", "advancedFeatureUsage"):
            assert key in prompt
