"""Shared configuration management for the receipt service.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from decimal import Decimal
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="receipt-insights",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Workspace
    documents_dir: Path = Field(
        default=Path("data"),
        description="Folder whose PDF files make up the live receipt set",
    )
    cache_path: Path = Field(
        default=Path("analysis-cache/receipts.json"),
        description="JSON file holding the consolidated receipts cache entry",
    )

    # Classification provider configuration
    classification_provider: Literal["ollama", "openai", "disabled"] = Field(
        default="ollama",
        description=(
            "Text classification provider: ollama (self-hosted LLM), openai (cloud API), "
            "disabled (always fall back to rule-based results)"
        ),
    )
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server base URL",
    )
    ollama_model: str = Field(
        default="gemma2:27b",
        description="Ollama model used for line item extraction and labeling",
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model used when classification_provider=openai",
    )
    classification_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Per-request timeout; expiry counts as service unavailable",
    )
    classification_temperature: float = Field(
        default=0.1,
        ge=0,
        le=2,
        description="Sampling temperature (low values keep extraction deterministic)",
    )
    classification_max_tokens: int = Field(
        default=1000,
        gt=0,
        description="Maximum tokens generated per classification request",
    )

    # Extraction tuning
    line_item_max_amount: Decimal = Field(
        default=Decimal("50000"),
        gt=0,
        description="Line item amounts at or above this are treated as stray numbers",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
