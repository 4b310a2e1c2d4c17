"""LLM Client for Groq API integration."""
import time
from dataclasses import dataclass
from typing import Optional
from groq import Groq
from groq import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    InternalServerError,
    RateLimitError,
)
import logging

from config import GROQ_API_KEY, CHAT_MODEL, MAX_REPLY_TOKENS, LLM_TIMEOUT, LLM_MAX_RETRIES, LLM_INITIAL_DELAY
from errors import ChatError, ProviderError, TransientNetworkError
from services.context_assembler import AssembledPrompt

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (RateLimitError, APITimeoutError, APIConnectionError, InternalServerError)


@dataclass
class LLMResponse:
    """Response from LLM generation."""
    text: str
    tokens_input: int
    tokens_output: int
    latency_ms: int
    model_used: str
    attempts: int = 1


class LLMClient:
    """Client for interfacing with Groq API for text generation."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = CHAT_MODEL,
        timeout: float = LLM_TIMEOUT,
        max_retries: int = LLM_MAX_RETRIES,
        initial_delay: float = LLM_INITIAL_DELAY,
        max_delay: float = 16.0
    ):
        """
        Initialize LLM client with Groq API key.

        Args:
            api_key: Groq API key (defaults to GROQ_API_KEY from environment)
            model: Chat model name
            timeout: Per-request timeout in seconds
            max_retries: Total attempts for retryable failures
            initial_delay: First backoff delay in seconds
            max_delay: Backoff ceiling in seconds
        """
        self.api_key = api_key or GROQ_API_KEY
        if not self.api_key:
            raise ValueError("GROQ_API_KEY must be provided or set in environment")
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        # Retries are handled here, not inside the SDK
        self.client = Groq(api_key=self.api_key, timeout=timeout, max_retries=0)
        logger.info("LLMClient initialized successfully")

    def generate(
        self,
        prompt: AssembledPrompt,
        model: Optional[str] = None,
        max_tokens: int = MAX_REPLY_TOKENS
    ) -> LLMResponse:
        """
        Generate a reply for an assembled prompt.

        Rate limits, timeouts, connection errors and 5xx responses are retried
        with exponential backoff up to max_retries attempts. An empty or
        malformed completion is a failure, never returned as a reply.

        Args:
            prompt: Assembled system prompt and chat messages
            model: Override of the configured model name
            max_tokens: Maximum tokens to generate

        Returns:
            LLMResponse with text, token counts, and latency

        Raises:
            TransientNetworkError: Timeouts/connection errors on every attempt
            ProviderError: Non-retryable error, exhausted retries, or empty output
        """
        model = model or self.model
        delay = self.initial_delay
        start_time = time.time()

        for attempt in range(1, self.max_retries + 1):
            try:
                logger.debug(f"Generating response with model: {model} (attempt {attempt})")
                response = self.client.chat.completions.create(
                    model=model,
                    messages=[{"role": "system", "content": prompt.system}, *prompt.messages],
                    max_tokens=max_tokens,
                    temperature=0.7
                )
                return self._to_response(response, model, start_time, attempt)

            except RETRYABLE_ERRORS as e:
                if attempt == self.max_retries:
                    raise self._exhausted_error(e, model, start_time, attempt)
                logger.warning(
                    f"Retryable {type(e).__name__} from model={model} on attempt "
                    f"{attempt}/{self.max_retries}; retrying in {delay:.1f}s"
                )
                time.sleep(delay)
                delay = min(delay * 2, self.max_delay)

            except ChatError:
                raise

            except AuthenticationError as e:
                raise self._fail(
                    ProviderError,
                    "AUTHENTICATION_ERROR",
                    "Authentication failed. Please check your API key.",
                    e, model, start_time, attempt
                )

            except APIStatusError as e:
                raise self._fail(
                    ProviderError,
                    "API_ERROR",
                    f"Groq API error: {str(e)}",
                    e, model, start_time, attempt,
                    status_code=e.status_code
                )

            except APIError as e:
                raise self._fail(
                    ProviderError, "API_ERROR", f"Groq API error: {str(e)}", e, model, start_time, attempt
                )

    def _to_response(self, response, model: str, start_time: float, attempt: int) -> LLMResponse:
        latency_ms = int((time.time() - start_time) * 1000)

        try:
            text = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError):
            text = None

        if not isinstance(text, str) or not text.strip():
            raise self._fail(
                ProviderError,
                "EMPTY_COMPLETION",
                "The model returned an empty reply.",
                None, model, start_time, attempt
            )

        usage = getattr(response, "usage", None)
        tokens_input = getattr(usage, "prompt_tokens", 0) or 0
        tokens_output = getattr(usage, "completion_tokens", 0) or 0

        logger.info(
            f"Generated response: model={model}, "
            f"input_tokens={tokens_input}, output_tokens={tokens_output}, "
            f"latency={latency_ms}ms, attempts={attempt}"
        )

        return LLMResponse(
            text=text.strip(),
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            latency_ms=latency_ms,
            model_used=model,
            attempts=attempt
        )

    def _exhausted_error(self, error: Exception, model: str, start_time: float, attempt: int) -> ChatError:
        if isinstance(error, APITimeoutError):
            return self._fail(
                TransientNetworkError, "TIMEOUT_ERROR",
                "Request timed out. Please try again.",
                error, model, start_time, attempt
            )
        if isinstance(error, APIConnectionError):
            return self._fail(
                TransientNetworkError, "CONNECTION_ERROR",
                "Could not reach the model provider. Please try again.",
                error, model, start_time, attempt
            )
        if isinstance(error, RateLimitError):
            return self._fail(
                ProviderError, "RATE_LIMIT_ERROR",
                "Rate limit exceeded. Please try again in a few moments.",
                error, model, start_time, attempt,
                retry_after=60
            )
        return self._fail(
            ProviderError, "API_ERROR",
            f"Groq API error: {str(error)}",
            error, model, start_time, attempt
        )

    @staticmethod
    def _fail(error_cls, code, message, error, model, start_time, attempt, **details) -> ChatError:
        latency_ms = int((time.time() - start_time) * 1000)
        details.update({
            "model": model,
            "latency_ms": latency_ms,
            "attempts": attempt,
        })
        if error is not None:
            details["original_error"] = str(error)
        failure = error_cls(message, code=code, details=details)
        logger.error(
            f"{code}: model={model}, latency={latency_ms}ms, attempts={attempt}, error={error}",
            exc_info=error is not None,
            extra={"error_code": code, "error_details": details}
        )
        return failure
