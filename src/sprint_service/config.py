"""Configuration management using pydantic-settings.

This module provides configuration loading with the following precedence:
1. CLI arguments (highest priority)
2. Environment variables (SPRINT_BOARD_* prefix)
3. Global config file (~/.config/sprint-board/config.toml)
4. Built-in defaults (lowest priority)
"""

import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# User identifiers become part of local storage keys
USER_ID_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.@-]{0,127}$")


def validate_user_id(user_id: str) -> bool:
    """Validate user_id format.

    Args:
        user_id: User identifier to validate

    Returns:
        True if valid, False otherwise

    Pattern: ^[a-zA-Z0-9][a-zA-Z0-9_.@-]{0,127}$
    - Must start with alphanumeric
    - Can contain alphanumeric, underscore, dot, at-sign, hyphen
    - 1-128 characters total
    """
    return bool(USER_ID_PATTERN.match(user_id))


def get_config_path() -> Path:
    """Get the global config file path (XDG compliant).

    Returns:
        Path to config file:
        - Linux/macOS: ~/.config/sprint-board/config.toml
        - Windows: %APPDATA%/sprint-board/config.toml
    """
    if os.name == "nt":  # Windows
        base = Path(os.environ.get("APPDATA", Path.home()))
    else:  # Linux/macOS
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base / "sprint-board" / "config.toml"


class KnownUser(BaseModel):
    """Directory entry seeded from configuration."""

    id: str
    name: str
    email: str | None = None
    avatar_url: str | None = None


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Environment variables use SPRINT_BOARD_ prefix:
    - SPRINT_BOARD_BACKEND
    - SPRINT_BOARD_DATABASE_PATH
    - SPRINT_BOARD_USER_ID
    etc.
    """

    model_config = SettingsConfigDict(
        env_prefix="SPRINT_BOARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage backend
    backend: Literal["remote", "local"] = Field(default="remote", description="Active persistence backend")
    database_path: str = Field(
        default="~/.local/share/sprint-board/board.db",
        description="SQLite file backing the shared relational store",
    )
    local_store_path: str = Field(
        default="~/.local/share/sprint-board/local.db",
        description="SQLite file backing the per-user key-value store",
    )

    # Session
    user_id: str = Field(default="local-user", description="Acting user identifier")
    project_id: str | None = Field(default=None, description="Project scope for the relational store")

    # User directory seed
    known_users: list[KnownUser] = Field(default_factory=list, description="Users resolvable as assignees")

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "console"] = Field(
        default="json",
        description="Log output format",
    )
    log_file: str | None = Field(default=None, description="Log file path (optional)")

    # Metrics Configuration
    metrics_enabled: bool = Field(default=False, description="Expose Prometheus metrics over HTTP")
    metrics_port: int = Field(default=9090, description="HTTP server port for metrics")

    def resolved_database_path(self) -> Path:
        return Path(self.database_path).expanduser()

    def resolved_local_store_path(self) -> Path:
        return Path(self.local_store_path).expanduser()


def load_toml_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from TOML file.

    Args:
        path: Path to config file (uses default if None)

    Returns:
        Configuration dictionary (empty if file doesn't exist)
    """
    try:
        import tomllib as toml_reader
    except ImportError:  # Python < 3.11
        import tomli as toml_reader  # type: ignore[no-redef]

    config_path = path or get_config_path()
    if config_path.exists():
        with open(config_path, "rb") as f:
            return toml_reader.load(f)
    return {}


def flatten_toml_config(toml_config: dict[str, Any]) -> dict[str, Any]:
    """Flatten nested TOML config to flat dictionary for Settings.

    Args:
        toml_config: Nested TOML configuration

    Returns:
        Flattened configuration dictionary
    """
    overrides: dict[str, Any] = {}

    if "storage" in toml_config:
        storage = toml_config["storage"]
        for key in ["backend", "database_path", "local_store_path"]:
            if key in storage:
                overrides[key] = storage[key]

    if "session" in toml_config:
        for key in ["user_id", "project_id"]:
            if key in toml_config["session"]:
                overrides[key] = toml_config["session"][key]

    if "server" in toml_config:
        for key in ["log_level", "log_format", "log_file"]:
            if key in toml_config["server"]:
                overrides[key] = toml_config["server"][key]

    if "metrics" in toml_config:
        if "enabled" in toml_config["metrics"]:
            overrides["metrics_enabled"] = toml_config["metrics"]["enabled"]
        if "port" in toml_config["metrics"]:
            overrides["metrics_port"] = toml_config["metrics"]["port"]

    if "users" in toml_config:
        overrides["known_users"] = list(toml_config["users"])

    return overrides


def load_settings_with_toml(config_path: Path | None = None, **cli_overrides: Any) -> Settings:
    """Load settings with TOML config as base, env vars and CLI as override.

    Args:
        config_path: Optional path to TOML config file
        **cli_overrides: Values given on the command line (None values ignored)

    Returns:
        Settings instance with merged configuration
    """
    toml_config = load_toml_config(config_path)
    overrides = flatten_toml_config(toml_config)

    # pydantic-settings gives init kwargs priority over env vars, so drop
    # TOML keys that the environment already sets.
    for key in list(overrides):
        if f"SPRINT_BOARD_{key.upper()}" in os.environ:
            del overrides[key]

    overrides.update({k: v for k, v in cli_overrides.items() if v is not None})
    return Settings(**overrides)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance (env vars and defaults only)."""
    return Settings()
