"""
Configuration management for Keyholder Tracker

Loads an optional JSON config file, applies KEYHOLDER_* environment
overrides and validates security-critical settings.
"""

import json
import logging
import os
import secrets
import sys
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Dict, Any, Optional, List

# List of known weak/default JWT secrets that should be rejected
WEAK_JWT_SECRETS = {
    "your-secret-key-change-in-production",
    "secret",
    "key",
    "password",
    "jwt-secret",
    "secret-key",
    "change-me",
    "default",
    "test",
    "development",
    "dev",
    "demo",
    "example",
    "sample",
}


def _validate_jwt_secret_key(jwt_secret_key: str) -> None:
    """Validate JWT secret key security and reject weak/default keys.

    Args:
        jwt_secret_key: The JWT secret key to validate

    Raises:
        SystemExit: If the secret key is weak, default, or insecure
    """
    if not jwt_secret_key:
        logging.critical(
            "JWT secret key is empty - this is a critical security vulnerability"
        )
        sys.exit(1)

    if len(jwt_secret_key) < 32:
        logging.critical(
            f"JWT secret key is too short ({len(jwt_secret_key)} chars). "
            f"Minimum 32 characters required for security."
        )
        sys.exit(1)

    if jwt_secret_key.lower() in WEAK_JWT_SECRETS:
        logging.critical(
            f"JWT secret key '{jwt_secret_key}' is a known weak/default secret. "
            f"Set KEYHOLDER_JWT_SECRET_KEY environment variable with a secure key."
        )
        sys.exit(1)

    unique_chars = len(set(jwt_secret_key))
    if unique_chars < 8:
        logging.critical(
            f"JWT secret key has insufficient entropy ({unique_chars} unique characters). "
            f"Use a cryptographically secure random key."
        )
        sys.exit(1)

    logging.debug(
        f"JWT secret key validation passed ({len(jwt_secret_key)} chars, {unique_chars} unique)"
    )


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class DatabaseConfig:
    """Database configuration."""

    url: str = "sqlite:///keyholder_tracker.db"
    echo: bool = False
    log_queries: bool = False  # Enable query logging for performance analysis


@dataclass
class ServerConfig:
    """Server configuration."""

    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    auto_reload: bool = False


@dataclass
class DomainConfig:
    """Limits and defaults of the relationship domain."""

    invite_code_length: int = 6
    invite_expiration_hours: int = 24
    max_active_invite_codes: int = 3
    request_expiration_days: int = 7
    default_list_limit: int = 50
    deadline_warning_hours: int = 24


@dataclass
class AppConfig:
    """Main application configuration."""

    app_name: str = "Keyholder Tracker"
    version: str = "1.0.0"
    description: str = "Keyholder/submissive relationship, session and task tracker"

    enable_cors: bool = True
    allowed_origins: List[str] = field(
        default_factory=lambda: ["http://127.0.0.1:8000", "http://localhost:8000"]
    )

    # JWT Configuration - secret key will be auto-generated or from environment
    jwt_secret_key: str = ""  # Must be set at runtime - no default for security
    jwt_access_token_expires_minutes: int = 60

    # Logging
    log_level: str = "INFO"
    log_to_file: bool = True
    log_dir: str = "logs"


@dataclass
class KeyholderConfig:
    """Complete configuration for Keyholder Tracker."""

    app: AppConfig
    server: ServerConfig
    database: DatabaseConfig
    domain: DomainConfig

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "app": asdict(self.app),
            "server": asdict(self.server),
            "database": asdict(self.database),
            "domain": asdict(self.domain),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyholderConfig":
        """Create from dictionary."""
        return cls(
            app=AppConfig(**data.get("app", {})),
            server=ServerConfig(**data.get("server", {})),
            database=DatabaseConfig(**data.get("database", {})),
            domain=DomainConfig(**data.get("domain", {})),
        )


class ConfigManager:
    """Manages configuration loading and environment overrides."""

    def __init__(self):
        self.config_file: Optional[Path] = None
        self.config: Optional[KeyholderConfig] = None

    def get_config_file_path(self) -> Optional[Path]:
        """Get the path for the config file, if one is configured."""
        config_file = os.getenv("KEYHOLDER_CONFIG_FILE")
        return Path(config_file) if config_file else None

    def _read_config_file(self) -> Dict[str, Any]:
        self.config_file = self.get_config_file_path()
        if self.config_file is None:
            logging.info("No config file configured, using defaults")
            return {}
        if not self.config_file.exists():
            logging.warning(f"Config file {self.config_file} does not exist, using defaults")
            return {}

        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logging.warning(f"Failed to load config from {self.config_file}: {e}")
            return {}

        logging.info(f"Loaded configuration from {self.config_file}")
        return data

    def _apply_environment(self, config: KeyholderConfig) -> None:
        """Apply KEYHOLDER_* environment variable overrides in place."""
        db_url = os.getenv("KEYHOLDER_DATABASE_URL")
        if db_url:
            config.database.url = db_url
        config.database.log_queries = _env_flag(
            "KEYHOLDER_LOG_QUERIES", config.database.log_queries
        )

        config.server.debug = _env_flag("KEYHOLDER_DEBUG", config.server.debug)
        if config.server.debug:
            config.app.log_level = "DEBUG"

        log_dir = os.getenv("KEYHOLDER_LOG_DIR")
        if log_dir:
            config.app.log_dir = log_dir
        config.app.log_to_file = _env_flag("KEYHOLDER_LOG_TO_FILE", config.app.log_to_file)

        for attr in (
            "invite_expiration_hours",
            "max_active_invite_codes",
            "request_expiration_days",
            "default_list_limit",
            "deadline_warning_hours",
        ):
            value = os.getenv(f"KEYHOLDER_{attr.upper()}")
            if value:
                setattr(config.domain, attr, int(value))

        jwt_secret_key = os.getenv("KEYHOLDER_JWT_SECRET_KEY")
        if jwt_secret_key:
            logging.info(
                "Using JWT secret key from KEYHOLDER_JWT_SECRET_KEY environment variable"
            )
            config.app.jwt_secret_key = jwt_secret_key
        elif not config.app.jwt_secret_key:
            # Generate cryptographically secure 64-byte secret
            config.app.jwt_secret_key = secrets.token_urlsafe(64)
            logging.info("Generated new JWT secret key (not from environment)")

    def load_config(self) -> KeyholderConfig:
        """Load configuration from file and environment."""
        config = KeyholderConfig.from_dict(self._read_config_file())
        self._apply_environment(config)

        # Validate JWT secret key security
        _validate_jwt_secret_key(config.app.jwt_secret_key)

        self.config = config
        return self.config

    def get_database_url(self) -> str:
        """Get the database URL."""
        if self.config is None:
            self.load_config()
        return self.config.database.url

    def validate_security_config(self) -> None:
        """Validate security-critical configuration at startup.

        Raises:
            SystemExit: If critical security issues are found
        """
        if self.config is None:
            self.load_config()

        _validate_jwt_secret_key(self.config.app.jwt_secret_key)
        logging.info("Security configuration validation passed")


# Global config manager instance
config_manager = ConfigManager()


def get_config() -> KeyholderConfig:
    """Get the current configuration, loading it on first use."""
    if config_manager.config is None:
        return config_manager.load_config()
    return config_manager.config


def reset_config() -> None:
    """Drop the cached configuration so the next access reloads it."""
    config_manager.config = None


def get_database_url() -> str:
    """Get the database URL."""
    return config_manager.get_database_url()


def validate_startup_security() -> None:
    """Validate security configuration at application startup.

    Raises:
        SystemExit: If critical security vulnerabilities are detected
    """
    config_manager.validate_security_config()
    logging.info("Startup security validation completed successfully")
