from __future__ import annotations

from pathlib import Path
from typing import Callable, List

import pytest

from fakes import EchoUpstream, FakeEndpoint
from voice_relay.app import create_app
from voice_relay.config import Settings, get_settings


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Keep the developer's environment and .env out of the tests."""

    monkeypatch.chdir(tmp_path)
    for key in ("DEEPGRAM_API_KEY", "SESSION_SECRET", "ALLOWED_ORIGINS", "PORT", "HOST"):
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()  # type: ignore[attr-defined]
    yield
    get_settings.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        deepgram_api_key="test-key",
        session_secret="s" * 64,
        metadata_path=tmp_path / "deepgram.toml",
        shutdown_timeout_seconds=1.0,
    )


class UpstreamFactory:
    """Connector handing out fresh echo upstreams, remembering each one."""

    def __init__(self, endpoint_cls: Callable[[], FakeEndpoint] = EchoUpstream):
        self._endpoint_cls = endpoint_cls
        self.created: List[FakeEndpoint] = []

    async def __call__(self) -> FakeEndpoint:
        endpoint = self._endpoint_cls()
        self.created.append(endpoint)
        return endpoint


@pytest.fixture
def upstreams() -> UpstreamFactory:
    return UpstreamFactory()


@pytest.fixture
def app(settings: Settings, upstreams: UpstreamFactory):
    return create_app(settings, connector=upstreams)
