"""Configuration management for order-sync."""

from decimal import Decimal
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError
from .matcher import MatcherConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Monarch Money API
    monarch_token: str

    # OpenAI API
    openai_api_key: str
    openai_model: str = "gpt-4o"

    # Matching settings
    amount_tolerance: Decimal = Decimal("0.01")  # dollars
    date_tolerance_days: int = 5

    # Sync settings
    lookback_days: int = 14
    transaction_fetch_limit: int = 500

    # Database path
    database_path: Path = Path.home() / ".order_sync" / "order_sync.db"

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

    def matcher_config(self) -> MatcherConfig:
        """Build the matcher configuration for a sync run."""
        return MatcherConfig(
            amount_tolerance=self.amount_tolerance,
            date_tolerance_days=self.date_tolerance_days,
        )


def load_settings() -> Settings:
    """
    Load application settings from environment variables.

    Raises:
        ConfigurationError: If required settings are missing or invalid
    """
    try:
        return Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Make sure you have created a .env file "
            f"with MONARCH_TOKEN and OPENAI_API_KEY set. "
            f"See .env.example for reference.\n"
            f"Error: {e}"
        ) from e
