"""Configuration management for the Admission Gateway."""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with rate limiting configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Server configuration
    HOST: str = Field(default="127.0.0.1", description="Server host")
    PORT: int = Field(default=8000, description="Server port")
    DEBUG: bool = Field(default=False, description="Debug mode")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Logging format: json or text")

    # Security settings
    CORS_ORIGINS: list[str] = Field(default_factory=lambda: ["*"], description="CORS allowed origins")

    # Authentication
    API_KEY_HEADER: str = Field(default="X-API-Key", description="API key header name")

    # Rate limiting configuration
    ENABLE_RATE_LIMITING: bool = Field(default=True, description="Enable rate limiting")
    RATE_LIMIT_SWEEP_INTERVAL: float = Field(
        default=60.0, gt=0, le=3600, description="Seconds between expired window sweeps"
    )
    RATE_LIMIT_FAIL_OPEN: bool = Field(
        default=True, description="Admit calls when the rate limit store fails (False rejects them)"
    )
    RATE_LIMIT_INCLUDE_HEADERS: bool = Field(
        default=True, description="Include X-RateLimit-* headers on responses"
    )
    RATE_LIMIT_TRUST_FORWARDED: bool = Field(
        default=True, description="Use the first X-Forwarded-For hop as the client IP"
    )
    RATE_LIMIT_HEALTH_PATHS: list[str] = Field(
        default_factory=lambda: ["/health", "/api/health"],
        description="Paths exempt from the global rate limit"
    )
    RATE_LIMIT_POLICY_FILE: Optional[str] = Field(
        default=None, description="Optional YAML file with per-policy overrides"
    )

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator('LOG_FORMAT')
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format"""
        valid_formats = ['json', 'text']
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}")
        return v.lower()

    @field_validator('RATE_LIMIT_HEALTH_PATHS')
    @classmethod
    def validate_health_paths(cls, v):
        """Health paths are matched exactly against the request path"""
        for path in v:
            if not path.startswith("/"):
                raise ValueError(f"Health path must start with '/': {path}")
        return v

    @field_validator('API_KEY_HEADER')
    @classmethod
    def validate_api_key_header(cls, v):
        if not v.strip():
            raise ValueError("API key header name must not be empty")
        return v.strip()

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS allowed origins."""
        return self.CORS_ORIGINS


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings (for dependency injection)"""
    return settings
