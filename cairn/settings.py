"""
Cairn Settings - Configuration management using Pydantic Settings.

Loads configuration from environment variables and .env files.
"""

import getpass
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_stage() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "dev"


class CairnSettings(BaseSettings):
    """
    Cairn configuration settings.

    Settings are loaded from:
    1. Environment variables (highest priority)
    2. .env file in current directory
    3. Default values (lowest priority)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="CAIRN_",  # All Cairn env vars must start with CAIRN_
        populate_by_name=True,
    )

    # Scope Configuration
    stage: str = Field(
        default_factory=_default_stage,
        description="Stage name used as the first segment of every FQN (env: CAIRN_STAGE)",
    )

    password: str | None = Field(
        default=None,
        description="Password used to encrypt secrets in state (env: CAIRN_PASSWORD)",
        validation_alias=AliasChoices("CAIRN_PASSWORD", "SECRET_PASSPHRASE"),
    )

    phase: Literal["up", "destroy", "read"] = Field(
        default="up",
        description="Phase of the run: up, destroy or read (env: CAIRN_PHASE)",
    )

    quiet: bool = Field(
        default=False,
        description="Suppress lifecycle log lines (env: CAIRN_QUIET)",
    )

    # State Store Configuration
    state_store: Literal["fs", "sqlite", "memory", "http"] = Field(
        default="fs",
        description="State store backend (env: CAIRN_STATE_STORE)",
    )

    state_dir: Path = Field(
        default=Path(".cairn"),
        description="Root directory of the file system state store (env: CAIRN_STATE_DIR)",
    )

    sqlite_path: Path = Field(
        default=Path(".cairn/state.sqlite"),
        description="Database file of the SQLite state store (env: CAIRN_SQLITE_PATH)",
    )

    state_url: str | None = Field(
        default=None,
        description="Endpoint of the remote state store (env: CAIRN_STATE_URL)",
    )

    state_token: str | None = Field(
        default=None,
        description="Bearer token of the remote state store (env: CAIRN_STATE_TOKEN)",
    )

    # Destroy Configuration
    destroy_strategy: Literal["sequential", "parallel"] = Field(
        default="sequential",
        description="Default destroy strategy for scopes (env: CAIRN_DESTROY_STRATEGY)",
    )

    best_effort: bool = Field(
        default=False,
        description="Keep destroying after a failure and report all errors at the end (env: CAIRN_BEST_EFFORT)",
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR) (env: CAIRN_LOG_LEVEL)",
    )


# Global settings instance
_settings: CairnSettings | None = None


def get_settings() -> CairnSettings:
    """
    Get the global settings instance.

    Creates the settings instance on first call, then returns cached instance.

    Returns:
        CairnSettings instance
    """
    global _settings
    if _settings is None:
        _settings = CairnSettings()
    return _settings


def reload_settings() -> CairnSettings:
    """
    Reload settings from environment/files.

    Useful for testing or when .env file changes.

    Returns:
        Fresh CairnSettings instance
    """
    global _settings
    _settings = CairnSettings()
    return _settings
