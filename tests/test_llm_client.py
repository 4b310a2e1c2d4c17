"""Unit tests for LLMClient."""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from unittest.mock import Mock, patch
from groq import (
    APIConnectionError,
    APIError,
    APITimeoutError,
    AuthenticationError,
    RateLimitError,
)
from errors import ProviderError, TransientNetworkError
from services.context_assembler import AssembledPrompt
from services.llm_client import LLMClient, LLMResponse


def make_prompt():
    return AssembledPrompt(
        system="You are a calm monk.",
        messages=[{"role": "user", "content": "How do I start meditating?"}],
        token_count=20
    )


def make_completion(content="Begin with your breath.", prompt_tokens=150, completion_tokens=12):
    response = Mock()
    response.choices = [Mock(message=Mock(content=content))]
    response.usage = Mock(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
    return response


def rate_limit_error():
    return RateLimitError(
        message="Rate limit exceeded",
        response=Mock(status_code=429),
        body=None
    )


class TestLLMClient:
    """Test suite for LLMClient class."""

    def test_initialization_with_api_key(self):
        """Test LLMClient initializes with provided API key."""
        client = LLMClient(api_key="test_key")
        assert client.api_key == "test_key"
        assert client.model == "llama-3.3-70b-versatile"

    def test_initialization_without_api_key_raises_error(self):
        """Test LLMClient raises error when no API key provided."""
        with patch('services.llm_client.GROQ_API_KEY', None):
            with pytest.raises(ValueError, match="GROQ_API_KEY must be provided"):
                LLMClient()

    @patch('services.llm_client.Groq')
    def test_sdk_retries_disabled(self, mock_groq_class):
        """Test the SDK is built with its own retries turned off."""
        LLMClient(api_key="test_key", timeout=12.0)

        mock_groq_class.assert_called_once_with(api_key="test_key", timeout=12.0, max_retries=0)

    @patch('services.llm_client.Groq')
    def test_generate_success(self, mock_groq_class):
        """Test successful response generation."""
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = make_completion()
        mock_groq_class.return_value = mock_client

        client = LLMClient(api_key="test_key")
        response = client.generate(make_prompt())

        assert isinstance(response, LLMResponse)
        assert response.text == "Begin with your breath."
        assert response.tokens_input == 150
        assert response.tokens_output == 12
        assert response.model_used == "llama-3.3-70b-versatile"
        assert response.attempts == 1
        assert response.latency_ms >= 0

        call_kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert call_kwargs["messages"][0] == {"role": "system", "content": "You are a calm monk."}
        assert call_kwargs["messages"][1] == {"role": "user", "content": "How do I start meditating?"}

    @patch('services.llm_client.Groq')
    def test_generate_model_override(self, mock_groq_class):
        """Test an explicit model overrides the configured one."""
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = make_completion()
        mock_groq_class.return_value = mock_client

        client = LLMClient(api_key="test_key")
        response = client.generate(make_prompt(), model="llama-3.1-8b-instant")

        assert response.model_used == "llama-3.1-8b-instant"
        assert mock_client.chat.completions.create.call_args.kwargs["model"] == "llama-3.1-8b-instant"

    @patch('services.llm_client.time.sleep')
    @patch('services.llm_client.Groq')
    def test_rate_limit_retried_then_success(self, mock_groq_class, mock_sleep):
        """Test a rate limit is retried with backoff."""
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = [rate_limit_error(), make_completion()]
        mock_groq_class.return_value = mock_client

        client = LLMClient(api_key="test_key", initial_delay=1.0)
        response = client.generate(make_prompt())

        assert response.attempts == 2
        mock_sleep.assert_called_once_with(1.0)

    @patch('services.llm_client.time.sleep')
    @patch('services.llm_client.Groq')
    def test_rate_limit_exhausted(self, mock_groq_class, mock_sleep):
        """Test rate limits on every attempt become a ProviderError."""
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = rate_limit_error()
        mock_groq_class.return_value = mock_client

        client = LLMClient(api_key="test_key", max_retries=3, initial_delay=1.0)

        with pytest.raises(ProviderError) as exc_info:
            client.generate(make_prompt())

        assert exc_info.value.code == "RATE_LIMIT_ERROR"
        assert exc_info.value.details["retry_after"] == 60
        assert exc_info.value.details["attempts"] == 3
        assert mock_client.chat.completions.create.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]

    @patch('services.llm_client.time.sleep')
    @patch('services.llm_client.Groq')
    def test_backoff_capped(self, mock_groq_class, mock_sleep):
        """Test backoff never exceeds max_delay."""
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = rate_limit_error()
        mock_groq_class.return_value = mock_client

        client = LLMClient(api_key="test_key", max_retries=5, initial_delay=3.0, max_delay=5.0)

        with pytest.raises(ProviderError):
            client.generate(make_prompt())

        assert [c.args[0] for c in mock_sleep.call_args_list] == [3.0, 5.0, 5.0, 5.0]

    @patch('services.llm_client.time.sleep')
    @patch('services.llm_client.Groq')
    def test_timeout_exhausted_is_transient(self, mock_groq_class, mock_sleep):
        """Test timeouts on every attempt become a TransientNetworkError."""
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = APITimeoutError(request=Mock())
        mock_groq_class.return_value = mock_client

        client = LLMClient(api_key="test_key", max_retries=2)

        with pytest.raises(TransientNetworkError) as exc_info:
            client.generate(make_prompt())

        assert exc_info.value.code == "TIMEOUT_ERROR"
        assert mock_client.chat.completions.create.call_count == 2

    @patch('services.llm_client.time.sleep')
    @patch('services.llm_client.Groq')
    def test_connection_error_exhausted_is_transient(self, mock_groq_class, mock_sleep):
        """Test connection failures on every attempt become a TransientNetworkError."""
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = APIConnectionError(request=Mock())
        mock_groq_class.return_value = mock_client

        client = LLMClient(api_key="test_key", max_retries=2)

        with pytest.raises(TransientNetworkError) as exc_info:
            client.generate(make_prompt())

        assert exc_info.value.code == "CONNECTION_ERROR"

    @patch('services.llm_client.Groq')
    def test_authentication_error_not_retried(self, mock_groq_class):
        """Test authentication errors fail immediately."""
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = AuthenticationError(
            message="Invalid API key",
            response=Mock(status_code=401),
            body=None
        )
        mock_groq_class.return_value = mock_client

        client = LLMClient(api_key="invalid_key")

        with pytest.raises(ProviderError) as exc_info:
            client.generate(make_prompt())

        assert exc_info.value.code == "AUTHENTICATION_ERROR"
        assert "Authentication failed" in exc_info.value.message
        assert mock_client.chat.completions.create.call_count == 1

    @patch('services.llm_client.Groq')
    def test_generic_api_error(self, mock_groq_class):
        """Test handling of generic API errors."""
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = APIError(
            message="Service unavailable",
            request=Mock(),
            body=None
        )
        mock_groq_class.return_value = mock_client

        client = LLMClient(api_key="test_key")

        with pytest.raises(ProviderError) as exc_info:
            client.generate(make_prompt())

        assert exc_info.value.code == "API_ERROR"
        assert "Service unavailable" in exc_info.value.message

    @pytest.mark.parametrize("content", ["", "   ", None])
    @patch('services.llm_client.Groq')
    def test_empty_completion_rejected(self, mock_groq_class, content):
        """Test an empty reply is never returned."""
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = make_completion(content=content)
        mock_groq_class.return_value = mock_client

        client = LLMClient(api_key="test_key")

        with pytest.raises(ProviderError) as exc_info:
            client.generate(make_prompt())

        assert exc_info.value.code == "EMPTY_COMPLETION"

    @patch('services.llm_client.Groq')
    def test_missing_choices_rejected(self, mock_groq_class):
        """Test a completion without choices is a provider error."""
        response = Mock()
        response.choices = []
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = response
        mock_groq_class.return_value = mock_client

        client = LLMClient(api_key="test_key")

        with pytest.raises(ProviderError) as exc_info:
            client.generate(make_prompt())

        assert exc_info.value.code == "EMPTY_COMPLETION"

    @patch('services.llm_client.Groq')
    def test_error_details_included(self, mock_groq_class):
        """Test error details carry model and latency."""
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = AuthenticationError(
            message="Invalid API key",
            response=Mock(status_code=401),
            body=None
        )
        mock_groq_class.return_value = mock_client

        client = LLMClient(api_key="test_key")

        with pytest.raises(ProviderError) as exc_info:
            client.generate(make_prompt())

        details = exc_info.value.details
        assert details["model"] == "llama-3.3-70b-versatile"
        assert "latency_ms" in details
        assert "original_error" in details
