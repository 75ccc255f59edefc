"""Load configuration from YAML and environment variables. No hardcoded secrets."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Default config lives next to this module
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "default.yaml"

MAX_NUMBERED_KEYS = 20


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def parse_api_keys(environ: dict[str, str] | None = None) -> list[str]:
    """Keys from CHATSTREAM_API_KEYS (comma-separated) and CHATSTREAM_API_KEY_1..20.

    Placeholders starting with "your_" are dropped, duplicates removed, order kept.
    """
    env = os.environ if environ is None else environ
    keys: list[str] = []
    joined = env.get("CHATSTREAM_API_KEYS") or env.get("CHATSTREAM_API_KEY") or ""
    keys.extend(k.strip() for k in joined.split(","))
    for i in range(1, MAX_NUMBERED_KEYS + 1):
        keys.append((env.get(f"CHATSTREAM_API_KEY_{i}") or "").strip())
    return list(dict.fromkeys(k for k in keys if k and not k.startswith("your_")))


class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="REDIS_", extra="ignore")
    url: str = "redis://localhost:6379/0"


class ProviderSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PROVIDER_", extra="ignore")
    kind: Literal["openai", "lm_studio"] = "openai"
    base_url: Optional[str] = None
    api_keys: list[str] = Field(default_factory=list)
    models: list[str] = Field(
        default_factory=lambda: [
            "gemini-flash-latest",
            "gemini-flash-lite-latest",
        ]
    )
    system_prompt: Optional[str] = None
    timeout_seconds: float = 120.0
    # refuse turns whose prompt and media estimate above this; None disables the check
    max_input_tokens: Optional[int] = Field(default=None, ge=1)


class FailoverSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FAILOVER_", extra="ignore")
    rate_limit_minute_seconds: float = Field(default=120.0, ge=60.0)
    rate_limit_day_seconds: float = Field(default=86_400.0, ge=3600.0)
    permission_denied_seconds: float = 7 * 86_400.0


class RetrySettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RETRY_", extra="ignore")
    max_retries: int = Field(default=3, ge=0, le=20)
    base_delay_seconds: float = Field(default=2.0, ge=0.0)
    overload_status_codes: list[int] = Field(default_factory=lambda: [500, 502, 503, 504])


class ParserSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PARSER_", extra="ignore")
    reactions: list[str] = Field(
        default_factory=lambda: ["heart", "haha", "wow", "sad", "angry", "like"]
    )
    echo_filter_enabled: bool = False


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")
    level: str = "INFO"
    json_format: bool = True


class Config(BaseSettings):
    """Application config: YAML + env. Secrets from env only."""

    model_config = SettingsConfigDict(env_nested_delimiter="__", extra="ignore")

    redis: RedisSettings = Field(default_factory=RedisSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    failover: FailoverSettings = Field(default_factory=FailoverSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    parser: ParserSettings = Field(default_factory=ParserSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "Config":
        path = Path(config_path) if config_path else _DEFAULT_CONFIG_PATH
        yaml_data = _load_yaml(path)
        env_prefix = os.getenv("CHATSTREAM_ENV_PREFIX", "")
        if env_prefix:
            yaml_data = _deep_merge(yaml_data, _load_yaml(Path(f"config/{env_prefix}.yaml")))
        redis_url = os.getenv("REDIS_URL")
        if redis_url:
            yaml_data.setdefault("redis", {})["url"] = redis_url
        keys = parse_api_keys()
        if keys:
            yaml_data.setdefault("provider", {})["api_keys"] = keys
        models = os.getenv("CHATSTREAM_MODELS")
        if models:
            yaml_data.setdefault("provider", {})["models"] = [
                m.strip() for m in models.split(",") if m.strip()
            ]
        base_url = os.getenv("OPENAI_BASE_URL")
        if base_url:
            yaml_data.setdefault("provider", {})["base_url"] = base_url
        echo = os.getenv("ECHO_FILTER_ENABLED", "").lower() in ("1", "true", "yes")
        if echo:
            yaml_data.setdefault("parser", {})["echo_filter_enabled"] = True
        return cls(**yaml_data)


def get_config(config_path: str | Path | None = None) -> Config:
    return Config.load(config_path)
