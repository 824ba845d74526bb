import pytest

from sltmon import db, slt


class FakeTransport:
    """Stands in for ``slt.urllib_transport``: replays canned responses and records every call."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, method, url, headers=None, data=None, timeout=None):
        self.calls.append({"method": method, "url": url, "headers": headers or {}, "data": data, "timeout": timeout})
        if not self.responses:
            raise AssertionError(f"unexpected {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def methods(self):
        return [call["method"] for call in self.calls]


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_PATH", str(tmp_path / "sltmon.db"))
    monkeypatch.setattr(db, "DB_URL", "")
    db.init_db()
    return db


@pytest.fixture(autouse=True)
def clear_token_cache():
    slt.token_cache.clear()
    yield
    slt.token_cache.clear()


@pytest.fixture
def slt_env():
    return {
        "subscriber_id": "94112345678",
        "auth_token": None,
        "username": "user@example.com",
        "password": "secret",
        "channel_id": "WEB",
        "user_agent": "pytest",
    }
