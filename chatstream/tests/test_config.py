"""Tests for config loading."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from chatstream.config.loader import (
    Config,
    FailoverSettings,
    _deep_merge,
    _load_yaml,
    get_config,
    parse_api_keys,
)


def test_load_yaml_missing(tmp_path):
    assert _load_yaml(tmp_path / "nonexistent.yaml") == {}


def test_load_yaml_exists(tmp_path):
    path = tmp_path / "test.yaml"
    path.write_text("redis:\n  url: redis://custom:6380/2\n")
    data = _load_yaml(path)
    assert data["redis"]["url"] == "redis://custom:6380/2"


def test_deep_merge():
    base = {"a": 1, "b": {"x": 10, "y": 20}}
    override = {"b": {"y": 22, "z": 30}, "c": 3}
    out = _deep_merge(base, override)
    assert out == {"a": 1, "b": {"x": 10, "y": 22, "z": 30}, "c": 3}
    assert base["b"] == {"x": 10, "y": 20}


def test_default_yaml_values():
    config = Config.load()
    assert config.provider.kind == "openai"
    assert config.provider.models[0] == "gemini-flash-latest"
    assert config.provider.max_input_tokens == 200000
    assert config.failover.rate_limit_minute_seconds == 120
    assert config.failover.rate_limit_day_seconds == 86400
    assert config.failover.permission_denied_seconds == 604800
    assert config.retry.max_retries == 3
    assert config.retry.base_delay_seconds == 2.0
    assert config.retry.overload_status_codes == [500, 502, 503, 504]
    assert set(config.parser.reactions) == {"heart", "haha", "wow", "sad", "angry", "like"}
    assert config.parser.echo_filter_enabled is False
    assert config.provider.api_keys == []


def test_config_load_from_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "provider:\n  kind: lm_studio\n  models: [local-a, local-b]\n"
        "retry:\n  max_retries: 1\nredis:\n  url: redis://localhost:6379/0\n"
    )
    config = Config.load(config_path=path)
    assert config.provider.kind == "lm_studio"
    assert config.provider.models == ["local-a", "local-b"]
    assert config.retry.max_retries == 1


def test_config_env_override(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://test:6379/5")
    config = Config.load()
    assert config.redis.url == "redis://test:6379/5"


def test_api_keys_from_env(monkeypatch):
    monkeypatch.setenv("CHATSTREAM_API_KEYS", "k1, k2,k1")
    config = get_config()
    assert config.provider.api_keys == ["k1", "k2"]


def test_models_and_base_url_from_env(monkeypatch):
    monkeypatch.setenv("CHATSTREAM_MODELS", "a, b ,")
    monkeypatch.setenv("OPENAI_BASE_URL", "http://localhost:11434/v1")
    monkeypatch.setenv("ECHO_FILTER_ENABLED", "true")
    config = Config.load()
    assert config.provider.models == ["a", "b"]
    assert config.provider.base_url == "http://localhost:11434/v1"
    assert config.parser.echo_filter_enabled is True


def test_env_prefix_overlay(tmp_path, monkeypatch):
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "staging.yaml").write_text("retry:\n  base_delay_seconds: 0.5\n")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CHATSTREAM_ENV_PREFIX", "staging")
    config = Config.load()
    assert config.retry.base_delay_seconds == 0.5
    assert config.retry.max_retries == 3


def test_parse_api_keys_numbered_and_placeholders():
    env = {
        "CHATSTREAM_API_KEY": "main",
        "CHATSTREAM_API_KEY_1": "one",
        "CHATSTREAM_API_KEY_2": "your_key_here",
        "CHATSTREAM_API_KEY_3": "main",
        "CHATSTREAM_API_KEY_20": "last",
    }
    assert parse_api_keys(env) == ["main", "one", "last"]


def test_parse_api_keys_plural_wins():
    env = {"CHATSTREAM_API_KEYS": "a,b", "CHATSTREAM_API_KEY": "c"}
    assert parse_api_keys(env) == ["a", "b"]
    assert parse_api_keys({}) == []


def test_failover_windows_validated():
    with pytest.raises(ValidationError):
        FailoverSettings(rate_limit_minute_seconds=10)
    with pytest.raises(ValidationError):
        FailoverSettings(rate_limit_day_seconds=60)
