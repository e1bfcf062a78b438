"""Abstract base class for text classification providers.

The receipt pipeline asks an LLM two kinds of questions: pull line items out
of invoice text, and assign spend categories to line items. Both go through
this interface so the pipeline can switch between Ollama, OpenAI or no
service at all.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

from abc import ABC, abstractmethod

from prometheus_client import Counter
from pydantic import BaseModel

from services.shared.config import Settings

classification_requests_total = Counter(
    "classification_requests_total",
    "Total classification service requests",
    ["task", "status"],  # task: line_items, labeling; status: success, failed, unparseable, empty
)


class ClassificationResult(BaseModel):
    """Result of a classification request.

    Attributes:
        text: Raw model response or None if the request failed
        success: Whether the service answered
        error: Error message if the request failed
        provider: Name of provider that served the request (e.g., 'ollama')
    """

    text: str | None
    success: bool
    error: str | None = None
    provider: str


class ClassificationProvider(ABC):
    """Abstract base class for text classification providers.

    Implementations must never raise from ``complete``: failures are
    reported through ``ClassificationResult.success`` so callers can apply
    their own fallback.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @abstractmethod
    def complete(self, prompt: str) -> ClassificationResult:
        """Send a prompt and return the raw response text.

        Args:
            prompt: Fully built prompt

        Returns:
            ClassificationResult with response text or error
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is available/configured.

        Returns:
            True if provider can be used, False otherwise
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier (e.g., 'ollama', 'openai')
        """
        pass

    def close(self) -> None:
        """Release network resources held by the provider."""


class DisabledClassificationProvider(ClassificationProvider):
    """Provider used when no classification service is configured.

    Every request fails immediately, which sends the pipeline down its
    rule-based fallbacks.
    """

    @property
    def provider_name(self) -> str:
        return "disabled"

    def is_available(self) -> bool:
        return False

    def complete(self, prompt: str) -> ClassificationResult:
        return ClassificationResult(
            text=None,
            success=False,
            error="Classification service disabled",
            provider=self.provider_name,
        )
