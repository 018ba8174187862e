"""Settings for ad-rbac.

Environment driven configuration using pydantic-settings. Every field can be
set through an ``AD_RBAC_``-prefixed environment variable or a ``.env`` file.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.exceptions import ConfigurationError
from .constants import CacheTTL, DefaultActions


class AdRbacSettings(BaseSettings):
    """Runtime configuration for the RBAC engine and its collaborators."""

    model_config = SettingsConfigDict(
        env_prefix="AD_RBAC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = Field(default="development")

    # Database Configuration
    database_url: Optional[str] = Field(default=None)
    db_pool_min_size: int = Field(default=1)
    db_pool_max_size: int = Field(default=10)
    db_command_timeout: float = Field(default=30.0)

    # Permission Cache Configuration
    redis_url: Optional[str] = Field(default=None)
    cache_enabled: bool = Field(default=True)
    cache_ttl_permissions: int = Field(default=CacheTTL.PERMISSIONS_LONG)
    cache_key_prefix: str = Field(default="ad_rbac:")

    # Permission Discovery
    default_actions: List[str] = Field(default_factory=lambda: list(DefaultActions.CRUD))
    special_actions: List[str] = Field(default_factory=lambda: list(DefaultActions.SPECIAL))

    # Reporting
    expiring_days_default: int = Field(default=7)

    # Employee API Configuration
    employee_api_url: Optional[str] = Field(default=None)
    employee_api_secret: Optional[SecretStr] = Field(default=None)
    employee_api_timeout: float = Field(default=30.0)
    employee_api_employee_path: str = Field(default="/employee/{username}")

    @property
    def uses_database(self) -> bool:
        """Check if a PostgreSQL backend is configured."""
        return bool(self.database_url)

    @property
    def uses_redis(self) -> bool:
        """Check if Redis caching is configured."""
        return self.cache_enabled and bool(self.redis_url)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def validate_runtime(self) -> None:
        """Reject combinations that cannot be used at runtime."""
        if self.db_pool_min_size < 0 or self.db_pool_max_size < 1:
            raise ConfigurationError("Database pool sizes must be positive")
        if self.db_pool_min_size > self.db_pool_max_size:
            raise ConfigurationError(
                f"db_pool_min_size ({self.db_pool_min_size}) exceeds "
                f"db_pool_max_size ({self.db_pool_max_size})"
            )
        if self.cache_ttl_permissions <= 0:
            raise ConfigurationError("cache_ttl_permissions must be positive")
        if self.expiring_days_default < 0:
            raise ConfigurationError("expiring_days_default cannot be negative")
        if "{username}" not in self.employee_api_employee_path:
            raise ConfigurationError("employee_api_employee_path must contain '{username}'")


@lru_cache()
def get_settings() -> AdRbacSettings:
    """Get cached settings instance."""
    settings = AdRbacSettings()
    settings.validate_runtime()
    return settings
