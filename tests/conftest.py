import json

import httpx
import pytest

from trmnl_cli.client import WebhookClient
from trmnl_cli.config_store import ConfigStore
from trmnl_cli.history import HistoryLog


@pytest.fixture(autouse=True)
def _no_env_webhook(monkeypatch):
    monkeypatch.delenv("TRMNL_WEBHOOK", raising=False)
    monkeypatch.delenv("TRMNL_CONFIG", raising=False)


@pytest.fixture
def store(tmp_path):
    s = ConfigStore(tmp_path / "config.json")
    s.set_history(path=str(tmp_path / "history.jsonl"))
    return s


@pytest.fixture
def history(store):
    settings = store.history_settings()
    return HistoryLog(settings.path, settings.max_size_mb)


class Recorder:
    """Mock webhook endpoint collecting every request it sees."""

    def __init__(self, status_code=200, body='{"message":"ok"}', exc=None):
        self.status_code = status_code
        self.body = body
        self.exc = exc
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        return httpx.Response(self.status_code, text=self.body)

    def client(self) -> WebhookClient:
        return WebhookClient(transport=httpx.MockTransport(self))

    def last_json(self):
        return json.loads(self.requests[-1].content.decode("utf-8"))


@pytest.fixture
def endpoint():
    return Recorder()


@pytest.fixture
def make_endpoint():
    return Recorder
