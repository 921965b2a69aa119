"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, PositiveInt, field_validator, model_validator

HOUR_MS = 60 * 60 * 1000


class RetentionConfig(BaseModel):
    status_cache_duration_ms: PositiveInt = 24 * HOUR_MS
    media_cache_duration_ms: PositiveInt = 68 * HOUR_MS
    text_cache_duration_ms: PositiveInt = 3 * HOUR_MS


class StealthConfig(BaseModel):
    enabled: bool = True
    excluded_groups: list[str] = Field(default_factory=list)
    max_text_cache: PositiveInt = 1000
    mask_identifiers: bool = True
    retention: RetentionConfig = Field(default_factory=RetentionConfig)


class AccountConfig(BaseModel):
    id: str
    enabled: bool = True
    session: str = ""  # "package.module:ClassName" of the ChatSession implementation
    session_options: dict[str, Any] = Field(default_factory=dict)
    vault_destination: Optional[str] = None
    stealth: StealthConfig = Field(default_factory=StealthConfig)

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("account id must not be blank")
        if "/" in value or "\\" in value:
            raise ValueError(f"account id must not contain path separators: {value!r}")
        return value

    @field_validator("vault_destination")
    @classmethod
    def _blank_destination_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value


class StorageConfig(BaseModel):
    temp_root: str = "./data/temp_storage"
    ledger_path: str = "./data/stealth_relay.db"
    ledger_enabled: bool = True
    ledger_retention_days: PositiveInt = 30


class CleanupConfig(BaseModel):
    interval_minutes: PositiveInt = 360
    timezone: str = "Asia/Kolkata"


class ForwarderConfig(BaseModel):
    timezone: str = "Asia/Kolkata"
    send_timeout_seconds: float = 60.0
    download_timeout_seconds: float = 120.0


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    data_dir: str = "./data"
    accounts: list[AccountConfig]
    storage: StorageConfig = Field(default_factory=StorageConfig)
    cleanup: CleanupConfig = Field(default_factory=CleanupConfig)
    forwarder: ForwarderConfig = Field(default_factory=ForwarderConfig)

    @model_validator(mode="after")
    def _unique_account_ids(self) -> "AppConfig":
        seen: set[str] = set()
        for account in self.accounts:
            if account.id in seen:
                raise ValueError(f"Duplicate account id: {account.id}")
            seen.add(account.id)
        return self

    def enabled_accounts(self) -> list[AccountConfig]:
        return [a for a in self.accounts if a.enabled]


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = raw_data.get("data_dir", "./data")
    data_dir = _interpolate_env_vars(data_dir)

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
