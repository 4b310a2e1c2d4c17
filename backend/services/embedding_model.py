"""Embedding model integration with the OpenAI embeddings API."""
import time
import logging
from typing import List, Optional
import httpx
from config import (
    OPENAI_API_KEY,
    EMBEDDING_MODEL,
    EMBEDDING_API_URL,
    EMBEDDING_DIMENSIONS,
    EMBEDDING_TIMEOUT,
    EMBEDDING_MAX_RETRIES,
)
from errors import ProviderError, TransientNetworkError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class EmbeddingModel:
    """Wrapper for an OpenAI-compatible embeddings endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = OPENAI_API_KEY,
        model_name: str = EMBEDDING_MODEL,
        api_url: str = EMBEDDING_API_URL,
        dimensions: int = EMBEDDING_DIMENSIONS,
        max_retries: int = EMBEDDING_MAX_RETRIES,
        initial_delay: float = 0.5,
        timeout: float = EMBEDDING_TIMEOUT
    ):
        """
        Initialize the embedding model client.

        Args:
            api_key: OpenAI API key
            model_name: Model identifier (default: text-embedding-3-small)
            api_url: Embeddings endpoint URL
            dimensions: Expected vector length
            max_retries: Maximum number of attempts for retryable failures
            initial_delay: Initial delay in seconds for exponential backoff
            timeout: Per-request timeout in seconds
        """
        if not api_key:
            raise ValueError("OPENAI_API_KEY environment variable is required")

        self.api_key = api_key
        self.model_name = model_name
        self.api_url = api_url
        self.dimensions = dimensions
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.timeout = timeout

        logger.info(f"Initialized EmbeddingModel with model: {model_name}")

    def embed_text(self, text: str) -> List[float]:
        """
        Generate embedding for a single text string.

        Args:
            text: Text to embed

        Returns:
            Embedding vector as list of floats

        Raises:
            ValueError: If text is empty
            TransientNetworkError: On timeout or connectivity failure after all retries
            ProviderError: If the provider rejects the request or returns a bad payload
        """
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        return self._embed_with_retry([text])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts in a single API call.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, in input order

        Raises:
            ValueError: If texts list is empty or contains only empty strings
            TransientNetworkError: On timeout or connectivity failure after all retries
            ProviderError: If the provider rejects the request or returns a bad payload
        """
        if not texts:
            raise ValueError("Texts list cannot be empty")

        # Filter out empty strings and log warning
        valid_texts = [t for t in texts if t and t.strip()]
        if len(valid_texts) < len(texts):
            logger.warning(f"Filtered out {len(texts) - len(valid_texts)} empty texts from batch")

        if not valid_texts:
            raise ValueError("All texts in batch are empty")

        return self._embed_with_retry(valid_texts)

    def _embed_with_retry(self, texts: List[str]) -> List[List[float]]:
        """
        Call the embeddings API with exponential backoff.

        Rate limits (429), server errors (5xx), timeouts and connection errors
        are retried; any other non-200 status fails immediately.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors

        Raises:
            TransientNetworkError: Timeouts or network errors on every attempt
            ProviderError: Non-retryable status, exhausted retries, or malformed response
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        payload = {
            "input": texts,
            "model": self.model_name
        }

        delay = self.initial_delay
        last_error = None
        last_error_transient = False

        for attempt in range(self.max_retries):
            try:
                start_time = time.time()

                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(
                        self.api_url,
                        headers=headers,
                        json=payload
                    )

                elapsed = time.time() - start_time

                if response.status_code in RETRYABLE_STATUS_CODES:
                    last_error = f"Embedding API returned {response.status_code}"
                    last_error_transient = False
                    logger.warning(
                        f"{last_error} on attempt {attempt + 1}/{self.max_retries}. "
                        f"Retrying in {delay}s..."
                    )
                    if attempt < self.max_retries - 1:
                        time.sleep(delay)
                        delay = min(delay * 2, 8.0)
                    continue

                # Handle authentication errors
                if response.status_code == 401:
                    logger.error("Authentication failed for embeddings API")
                    raise ProviderError(
                        "Invalid embeddings API key",
                        code="AUTHENTICATION_ERROR",
                        details={"status_code": 401}
                    )

                # Handle other errors
                if response.status_code != 200:
                    error_msg = f"Embedding request failed with status {response.status_code}: {response.text}"
                    logger.error(error_msg)
                    raise ProviderError(error_msg, details={"status_code": response.status_code})

                try:
                    data = response.json()
                except ValueError:
                    raise ProviderError("Embedding response is not valid JSON")

                embeddings = self._parse_embeddings(data, expected=len(texts))
                logger.debug(f"Generated embeddings for {len(texts)} texts in {elapsed:.2f}s")
                return embeddings

            except httpx.TimeoutException:
                last_error = f"Request timeout after {self.timeout}s"
                last_error_transient = True
                logger.error(f"{last_error} on attempt {attempt + 1}/{self.max_retries}")

                if attempt < self.max_retries - 1:
                    time.sleep(delay)
                    delay = min(delay * 2, 8.0)

            except httpx.RequestError as e:
                last_error = f"Network error: {str(e)}"
                last_error_transient = True
                logger.error(f"{last_error} on attempt {attempt + 1}/{self.max_retries}")

                if attempt < self.max_retries - 1:
                    time.sleep(delay)
                    delay = min(delay * 2, 8.0)

        # All retries exhausted
        error_msg = f"Failed to generate embeddings after {self.max_retries} attempts. Last error: {last_error}"
        logger.error(error_msg)
        details = {"attempts": self.max_retries, "model": self.model_name}
        if last_error_transient:
            raise TransientNetworkError(error_msg, details=details)
        raise ProviderError(error_msg, details=details)

    def _parse_embeddings(self, data: dict, expected: int) -> List[List[float]]:
        """Extract vectors from an embeddings response, ordered by input index."""
        try:
            items = sorted(data["data"], key=lambda item: item.get("index", 0))
            embeddings = [list(item["embedding"]) for item in items]
        except (KeyError, TypeError) as e:
            raise ProviderError(f"Malformed embeddings response: {e}")

        if len(embeddings) != expected:
            raise ProviderError(
                f"Expected {expected} embeddings, got {len(embeddings)}",
                details={"expected": expected, "received": len(embeddings)}
            )
        for vector in embeddings:
            if len(vector) != self.dimensions:
                raise ProviderError(
                    f"Embedding has {len(vector)} dimensions, expected {self.dimensions}",
                    details={"dimensions": len(vector)}
                )
        return embeddings

    def warmup(self) -> bool:
        """
        Check the embeddings endpoint with a dummy query.

        Returns:
            True if the call succeeded, False otherwise
        """
        try:
            logger.info("Warming up embedding model...")
            start_time = time.time()
            self.embed_text("warmup query")
            logger.info(f"Model warmup completed in {time.time() - start_time:.1f}s")
            return True
        except (ProviderError, TransientNetworkError) as e:
            logger.error(f"Model warmup failed: {e.message}")
            return False
