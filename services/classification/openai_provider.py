"""OpenAI-based classification provider.

Cloud alternative to the Ollama provider for users without a local model.
Includes retry logic with exponential backoff for transient API errors.
Requires OPENAI_API_KEY environment variable.
"""

import logging
import os

from openai import APIConnectionError, APITimeoutError, OpenAI, RateLimitError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.classification.base import ClassificationProvider, ClassificationResult
from services.shared.config import Settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are an invoice analysis assistant. Answer with JSON only."


class OpenAIClassificationProvider(ClassificationProvider):
    """OpenAI-based classification provider using chat completions."""

    def __init__(self, settings: Settings) -> None:
        """Initialize OpenAI classification provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._client: OpenAI | None = None

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier 'openai'
        """
        return "openai"

    def is_available(self) -> bool:
        """Check if OpenAI API key is configured.

        Returns:
            True if OPENAI_API_KEY environment variable is set
        """
        return os.getenv("OPENAI_API_KEY") is not None

    def complete(self, prompt: str) -> ClassificationResult:
        """Send a prompt to the OpenAI chat completions API.

        Args:
            prompt: Fully built prompt

        Returns:
            ClassificationResult with the model response or error, provider='openai'
        """
        if not self.is_available():
            return ClassificationResult(
                text=None,
                success=False,
                error="OPENAI_API_KEY environment variable not set",
                provider=self.provider_name,
            )

        try:
            api_key = os.getenv("OPENAI_API_KEY")
            if self._client is None or self._client.api_key != api_key:
                self._client = OpenAI(
                    api_key=api_key,
                    timeout=self.settings.classification_timeout_seconds,
                    max_retries=0,
                )

            text = self._chat_with_retry(prompt)
            return ClassificationResult(text=text, success=True, provider=self.provider_name)

        except Exception as e:
            logger.warning(f"OpenAI classification failed: {e}")
            return ClassificationResult(
                text=None,
                success=False,
                error=f"Classification failed: {str(e)}",
                provider=self.provider_name,
            )

    @retry(
        retry=retry_if_exception_type((APIConnectionError, APITimeoutError, RateLimitError)),
        wait=wait_exponential_jitter(initial=1, max=30),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _chat_with_retry(self, prompt: str) -> str:
        """Call OpenAI API with retry logic for transient errors.

        Args:
            prompt: Prompt for the LLM

        Returns:
            Message content of the first choice

        Raises:
            Exception: After all retry attempts are exhausted
        """
        if self._client is None:
            raise RuntimeError("OpenAI client not initialized")

        response = self._client.chat.completions.create(
            model=self.settings.openai_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=self.settings.classification_temperature,
            max_tokens=self.settings.classification_max_tokens,
        )
        return response.choices[0].message.content or ""

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
