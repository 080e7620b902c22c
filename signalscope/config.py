"""Connection and behaviour settings, loaded from TOML with env overrides."""

import logging
import os
from pathlib import Path
from typing import Any

import toml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

CONFIG_PATH = Path.home() / ".config" / "signalscope" / "config.toml"
LOG_PATH = Path.home() / ".cache" / "signalscope" / "signalscope.log"
ENV_PREFIX = "SIGNALSCOPE_"


class ConfigError(Exception):
    """Raised when the config file cannot be read or parsed."""


class ElasticsearchSettings(BaseModel):
    url: str = "http://localhost:9200"
    index: str = ""
    api_key: str | None = None
    username: str | None = None
    password: str | None = None
    verify_tls: bool = True

    @field_validator("url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")


class TimeoutSettings(BaseModel):
    point: float = Field(default=10.0, gt=0, description="tail, search, docs, field caps")
    aggregation: float = Field(default=30.0, gt=0, description="aggregations and auto-range")
    chat: float = Field(default=60.0, gt=0)


class TuiSettings(BaseModel):
    tick_interval: float = Field(default=2.0, gt=0)
    page_size: int = Field(default=100, gt=0)
    auto_refresh: bool = True
    auto_detect_threshold: int = Field(default=10_000, gt=0)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)


class ChatSettings(BaseModel):
    command: str = "claude"
    model: str = "claude-haiku-4-5-20251001"


class LoggingSettings(BaseModel):
    level: str = "INFO"
    file: Path = LOG_PATH


class BrowserConfig(BaseModel):
    elasticsearch: ElasticsearchSettings = Field(default_factory=ElasticsearchSettings)
    tui: TuiSettings = Field(default_factory=TuiSettings)
    chat: ChatSettings = Field(default_factory=ChatSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# Flat env names -> (section, key). Nested timeouts are handled separately.
_ENV_MAP = {
    "ES_URL": ("elasticsearch", "url"),
    "ES_INDEX": ("elasticsearch", "index"),
    "ES_API_KEY": ("elasticsearch", "api_key"),
    "ES_USERNAME": ("elasticsearch", "username"),
    "ES_PASSWORD": ("elasticsearch", "password"),
    "ES_VERIFY_TLS": ("elasticsearch", "verify_tls"),
    "TICK_INTERVAL": ("tui", "tick_interval"),
    "PAGE_SIZE": ("tui", "page_size"),
    "CHAT_COMMAND": ("chat", "command"),
    "CHAT_MODEL": ("chat", "model"),
    "LOG_LEVEL": ("logging", "level"),
    "LOG_FILE": ("logging", "file"),
}


def _env_overrides(environ: dict[str, str]) -> dict[str, dict[str, Any]]:
    overrides: dict[str, dict[str, Any]] = {}
    for suffix, (section, key) in _ENV_MAP.items():
        value = environ.get(ENV_PREFIX + suffix)
        if value is not None:
            overrides.setdefault(section, {})[key] = value
    return overrides


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    path: Path | None = None,
    environ: dict[str, str] | None = None,
    load_env_file: bool = True,
) -> BrowserConfig:
    """Read the TOML file (if any), then apply ``SIGNALSCOPE_*`` env overrides.

    Raises ConfigError for unreadable TOML and pydantic.ValidationError for
    values of the wrong shape.
    """
    if load_env_file:
        load_dotenv()
    env = dict(os.environ) if environ is None else environ

    config_path = path or CONFIG_PATH
    data: dict[str, Any] = {}
    if config_path.exists():
        try:
            data = toml.load(config_path)
        except (toml.TomlDecodeError, OSError) as e:
            raise ConfigError(f"cannot read {config_path}: {e}") from e
        logger.debug("loaded config from %s", config_path)
    elif path is not None:
        raise ConfigError(f"config file not found: {config_path}")

    data = _merge(data, _env_overrides(env))
    return BrowserConfig.model_validate(data)
