"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "Integration Access Gateway"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./integrations.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Integration credential defaults
    INTEGRATION_CLIENT_ID_LENGTH: int = 40
    INTEGRATION_SECRET_LENGTH: int = 80
    INTEGRATION_DEFAULT_STATUS: str = "active"
    INTEGRATION_DEFAULT_ROLE: str = "user"

    # Listing
    INTEGRATION_PER_PAGE: int = 15
    INTEGRATION_MAX_PER_PAGE: int = 100

    # Country headers are only trustworthy behind a CDN / load balancer
    TRUST_COUNTRY_HEADERS: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    def validate_lengths(self) -> None:
        """Validate credential length settings.

        Raises:
            RuntimeError: If a configured length is too short to be safe
        """
        if self.INTEGRATION_CLIENT_ID_LENGTH < 16:
            raise RuntimeError(
                "INTEGRATION_CLIENT_ID_LENGTH must be at least 16 characters."
            )
        if self.INTEGRATION_SECRET_LENGTH < 32:
            raise RuntimeError(
                "INTEGRATION_SECRET_LENGTH must be at least 32 characters."
            )

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
