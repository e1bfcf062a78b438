"""Build the classification provider selected in settings."""

import logging

from services.classification.base import (
    ClassificationProvider,
    DisabledClassificationProvider,
)
from services.classification.ollama_provider import OllamaClassificationProvider
from services.classification.openai_provider import OpenAIClassificationProvider
from services.shared.config import Settings

logger = logging.getLogger(__name__)

# Keys match the Settings.classification_provider literal
PROVIDERS: dict[str, type[ClassificationProvider]] = {
    "ollama": OllamaClassificationProvider,
    "openai": OpenAIClassificationProvider,
    "disabled": DisabledClassificationProvider,
}


def provider_class_for(name: str) -> type[ClassificationProvider]:
    """Look up a provider class by its settings name.

    Raises:
        ValueError: If no provider is known under that name
    """
    try:
        return PROVIDERS[name]
    except KeyError:
        available = ", ".join(PROVIDERS)
        raise ValueError(
            f"Unknown classification provider: '{name}'. Available providers: {available}"
        ) from None


def _model_name(settings: Settings) -> str | None:
    if settings.classification_provider == "ollama":
        return settings.ollama_model
    if settings.classification_provider == "openai":
        return settings.openai_model
    return None


def create_classification_service(settings: Settings) -> ClassificationProvider:
    """Create the classification provider named by settings.classification_provider.

    An unavailable provider is still returned. Line item recognition falls
    back to rule results and labeling to "Other" when requests fail, so a
    missing model server degrades the pipeline rather than stopping it.

    Args:
        settings: Application settings

    Returns:
        Configured classification provider instance
    """
    provider_name = settings.classification_provider
    provider = provider_class_for(provider_name)(settings)

    if provider_name == "disabled":
        logger.info("Classification disabled; using rule-based line items and 'Other' labels")
        return provider

    model = _model_name(settings)
    if not provider.is_available():
        logger.warning(
            f"Classification provider '{provider_name}' ({model}) is not available. "
            f"Line item fallback and labeling will use defaults."
        )
    else:
        logger.info(f"Created classification provider: {provider_name} ({model})")
    return provider
