"""mailgate configuration system using Pydantic Settings."""

from __future__ import annotations

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GatewayConfig(BaseSettings):
    """Main configuration class. Loads from .env file and MAILGATE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MAILGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    debug: bool = False
    log_file_path: str = "logs/mailgate.log"
    log_max_bytes: int = 500_000_000  # 500 MB
    log_backup_count: int = 3

    # Milter listener
    milter_name: str = "mailgate"
    milter_host: str = "127.0.0.1"
    milter_port: int = 7357
    milter_timeout: int = 600  # seconds

    # THOR Thunderstorm
    thunderstorm_url: str = "http://127.0.0.1:8080/api/check"
    scan_timeout: float = 60.0  # seconds per attempt
    scan_retries: int = 1
    scan_retry_default_wait: float = 10.0  # seconds, when Retry-After is missing

    # Size guard and MIME ceilings
    max_file_size_bytes: int = 25_000_000
    max_mime_depth: int = 32
    max_mime_parts: int = 1000

    # Decision
    active_mode: bool = False
    quarantine_expression: str = "fullMatch.score >= 80"
    quarantine_reason: str = "Quarantine"

    @field_validator("thunderstorm_url")
    @classmethod
    def validate_thunderstorm_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("thunderstorm_url must be an http(s) URL")
        return v

    @field_validator("scan_retries")
    @classmethod
    def validate_scan_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("scan_retries must be >= 0")
        return v

    @field_validator(
        "max_file_size_bytes",
        "max_mime_depth",
        "max_mime_parts",
        "scan_timeout",
        "milter_port",
    )
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("quarantine_expression")
    @classmethod
    def validate_expression_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("quarantine_expression must not be empty")
        return v

    @property
    def milter_socket(self) -> str:
        """Connection spec in libmilter notation."""
        return f"inet:{self.milter_port}@{self.milter_host}"


def get_config(env_file: Optional[str] = None) -> GatewayConfig:
    """Factory function to create config instance."""
    if env_file:
        return GatewayConfig(_env_file=env_file)
    return GatewayConfig()
