import os
import socket
import sys
import urllib.request
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC = REPO_ROOT / "src"

# Prefer repo sources over any installed package.
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from dealforge_lookup.settings import reset_settings_cache  # noqa: E402
from dealforge_lookup.sources.base import AdapterError, LookupSource  # noqa: E402
from dealforge_lookup.store import LookupCacheStore  # noqa: E402


NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
DAY = timedelta(days=1)


@pytest.fixture(autouse=True)
def block_network(monkeypatch):
    if os.getenv("LIVE") == "1":
        return

    real_connect = socket.socket.connect

    def guarded_connect(sock, address):
        host = address[0]
        if host not in ("127.0.0.1", "localhost"):
            raise RuntimeError("Network access blocked in tests")
        return real_connect(sock, address)

    monkeypatch.setattr(socket.socket, "connect", guarded_connect)
    monkeypatch.setattr(
        urllib.request,
        "urlopen",
        lambda *args, **kwargs: (_ for _ in ()).throw(
            RuntimeError("Network access blocked in tests")
        ),
    )


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    for name in list(os.environ):
        if name.startswith("LOOKUP_") or name in ("HUD_API_KEY", "MAPBOX_ACCESS_TOKEN"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("NEXT_PUBLIC_MAPBOX_ACCESS_TOKEN", raising=False)
    reset_settings_cache()
    yield
    reset_settings_cache()


class FakeSource(LookupSource):
    """Scripted source: returns ``payload`` or raises ``error``; counts calls."""

    def __init__(self, domain="fmr", source_name="fake", payload=None, error=None):
        self.domain = domain
        self.source_name = source_name
        self.payload = payload if payload is not None else {"value": 1}
        self.error = error
        self.calls = []

    def fetch(self, key):
        self.calls.append(key)
        if self.error is not None:
            raise AdapterError(self.source_name, self.error)
        if callable(self.payload):
            return self.payload(key)
        return dict(self.payload)


@pytest.fixture
def store(tmp_path):
    return LookupCacheStore(str(tmp_path / "cache.sqlite"))
