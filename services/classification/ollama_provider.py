"""Ollama-based classification provider for self-hosted LLM inference.

Uses a local Ollama server so receipts never leave the machine.

Requires Ollama server running on localhost:11434.
See: https://ollama.ai/
"""

import logging

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.classification.base import ClassificationProvider, ClassificationResult
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class OllamaClassificationProvider(ClassificationProvider):
    """Ollama-based classification provider.

    Supports models like Gemma2, Qwen2.5, Llama3.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize Ollama classification provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._model = settings.ollama_model
        self._client = httpx.Client(timeout=settings.classification_timeout_seconds)

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier 'ollama'
        """
        return "ollama"

    def is_available(self) -> bool:
        """Check if Ollama server is running and model is available.

        Returns:
            True if Ollama server responds and model is loaded
        """
        try:
            response = self._client.get(f"{self._base_url}/api/tags")
            if response.status_code != 200:
                return False
            models = response.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            return self._model.split(":")[0] in model_names
        except Exception:
            return False

    def complete(self, prompt: str) -> ClassificationResult:
        """Send a prompt to Ollama.

        Transport errors, timeouts and non-2xx responses all come back as an
        unsuccessful result once retries are exhausted.

        Args:
            prompt: Fully built prompt

        Returns:
            ClassificationResult with the model response or error
        """
        try:
            text = self._generate_with_retry(prompt)
            return ClassificationResult(text=text, success=True, provider=self.provider_name)
        except httpx.HTTPError as e:
            logger.warning(f"Ollama request failed: {e}")
            return ClassificationResult(
                text=None,
                success=False,
                error=f"Ollama request failed: {str(e)}",
                provider=self.provider_name,
            )
        except Exception as e:
            logger.error(f"Ollama classification failed: {e}")
            return ClassificationResult(
                text=None,
                success=False,
                error=f"Classification failed: {str(e)}",
                provider=self.provider_name,
            )

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, httpx.TimeoutException)),
        wait=wait_exponential_jitter(initial=1, max=10),
        stop=stop_after_attempt(2),
        reraise=True,
    )
    def _generate_with_retry(self, prompt: str) -> str:
        """Call Ollama generate API with retry logic for transient errors.

        Args:
            prompt: Prompt for the LLM

        Returns:
            Raw response text from Ollama

        Raises:
            httpx.HTTPError: After all retry attempts exhausted
        """
        response = self._client.post(
            f"{self._base_url}/api/generate",
            json={
                "model": self._model,
                "prompt": prompt,
                "stream": False,
                "options": {
                    "temperature": self.settings.classification_temperature,
                    "num_predict": self.settings.classification_max_tokens,
                },
            },
        )
        response.raise_for_status()
        result: str = response.json().get("response", "")
        return result

    def close(self) -> None:
        self._client.close()
