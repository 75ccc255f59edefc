"""Pytest fixtures and config."""


import pytest


@pytest.fixture(autouse=True)
def env_cleanup(monkeypatch):
    """Keep real keys and overrides from the shell out of tests."""
    for name in (
        "CHATSTREAM_API_KEYS",
        "CHATSTREAM_API_KEY",
        "CHATSTREAM_MODELS",
        "CHATSTREAM_ENV_PREFIX",
        "OPENAI_BASE_URL",
        "ECHO_FILTER_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)
    for i in range(1, 21):
        monkeypatch.delenv(f"CHATSTREAM_API_KEY_{i}", raising=False)
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/1")
    yield


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
