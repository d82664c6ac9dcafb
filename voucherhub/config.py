"""
Application Configuration

Centralized configuration management using Pydantic settings.
Loads from environment variables with fallback to .env file.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    get_settings() is cached, so tests that change the environment
    must call get_settings.cache_clear() afterwards.
    """

    # Database settings
    DATABASE_URL: str = "postgresql://localhost/voucherhub_dev"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40

    # Tenant routing
    # Apex domain; tenants live at <slug>.APP_DOMAIN
    APP_DOMAIN: str = "localhost"

    # Sessions
    SESSION_COOKIE_NAME: str = "vh_session"
    SESSION_MAX_AGE_SECONDS: int = 7 * 24 * 60 * 60
    BCRYPT_ROUNDS: int = 12

    # Subscription plans
    SUBSCRIPTION_ENABLED: bool = False
    DEFAULT_PLAN_SLUG: str = "starter"

    # Vouchers
    VOUCHER_VALIDITY_DAYS: int = 28

    # Onboarding
    INVITATION_EXPIRY_DAYS: int = 7

    # Redis for rate limiting
    REDIS_URL: str = "redis://localhost:6379/0"
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_PER_MINUTE: int = 120

    # Application settings
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
