"""
Configuration management for DOORLOCK.

Settings come from an optional YAML file, with environment variables (and
a ``.env`` file) layered on top. The shared secret is normally supplied as
``DOORLOCK_SECRET`` in hex so it never has to live in a checked-in file.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, SecretBytes, ValidationError, field_validator, model_validator

from .codegen import DEFAULT_DIGEST, MAX_DIGITS, MIN_DIGITS, HmacCodeDeriver
from .errors import ConfigurationError
from .store import COUNTER_STORAGE_KEY

SECRET_ENV = "DOORLOCK_SECRET"
LOG_LEVEL_ENV = "DOORLOCK_LOG_LEVEL"

DEFAULT_WINDOW = 10


class LockConfig(BaseModel):
    """Protocol parameters that both endpoints must agree on."""
    model_config = ConfigDict(frozen=True)

    secret: SecretBytes
    digits: int = Field(default=6, ge=MIN_DIGITS, le=MAX_DIGITS)
    min_digits: int = Field(default=1, ge=1)
    window: int = Field(default=DEFAULT_WINDOW, ge=0)
    digest: str = DEFAULT_DIGEST

    @field_validator("secret", mode="before")
    @classmethod
    def _decode_secret(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return bytes.fromhex(value)
            except ValueError as e:
                raise ValueError("secret must be a hex string") from e
        return value

    @field_validator("secret")
    @classmethod
    def _secret_not_empty(cls, value: SecretBytes) -> SecretBytes:
        if not value.get_secret_value():
            raise ValueError("secret must not be empty")
        return value

    @model_validator(mode="after")
    def _check_min_digits(self) -> "LockConfig":
        if self.min_digits > self.digits:
            raise ValueError("min_digits must not exceed digits")
        return self

    @model_validator(mode="after")
    def _check_digest(self) -> "LockConfig":
        HmacCodeDeriver(digits=self.digits, digest=self.digest)
        return self


class StorageConfig(BaseModel):
    """Where each endpoint keeps its counter."""
    counter_file: Path = Path("doorlock_counter.json")
    counter_key: str = COUNTER_STORAGE_KEY
    nvram_file: Path = Path("doorlock_nvram.bin")


class ServerConfig(BaseModel):
    """Verifier listening address (serial bridge / TCP)."""
    host: str = "127.0.0.1"
    port: int = Field(default=8765, ge=1, le=65535)


class BleConfig(BaseModel):
    """BLE serial adapter settings."""
    device_name: str = "HC-05"
    scan_timeout: float = Field(default=5.0, gt=0)
    write_characteristic: Optional[str] = None
    notify_characteristic: Optional[str] = None


class DoorLockSettings(BaseModel):
    """Complete settings for one endpoint."""
    lock: LockConfig
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    ble: BleConfig = Field(default_factory=BleConfig)
    log_level: str = Field(default="INFO", pattern="^(TRACE|DEBUG|INFO|SUCCESS|WARNING|ERROR|CRITICAL)$")


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"cannot read settings file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"settings file {path} must contain a mapping")
    return data


def load_settings(
    path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> DoorLockSettings:
    """
    Load settings from YAML and the environment.

    Args:
        path: Optional YAML settings file.
        overrides: Nested mapping applied last (used by the CLI options).

    Raises:
        ConfigurationError: If the settings are invalid or no secret is set.
    """
    load_dotenv()

    data: Dict[str, Any] = _read_yaml(Path(path)) if path else {}
    data["lock"] = dict(data.get("lock") or {})

    secret = os.environ.get(SECRET_ENV)
    if secret:
        data["lock"]["secret"] = secret
    log_level = os.environ.get(LOG_LEVEL_ENV)
    if log_level:
        data["log_level"] = log_level.upper()

    for section, values in (overrides or {}).items():
        if isinstance(values, dict):
            data[section] = dict(data.get(section) or {})
            data[section].update({k: v for k, v in values.items() if v is not None})
        elif values is not None:
            data[section] = values

    if "secret" not in data["lock"]:
        raise ConfigurationError(f"no shared secret configured; set {SECRET_ENV} or lock.secret")

    try:
        return DoorLockSettings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"invalid settings: {e}") from e
