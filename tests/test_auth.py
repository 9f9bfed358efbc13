import pytest

from plurr.core.config import settings
from plurr.middleware.auth import get_user_from_header, resolve_user_id


@pytest.fixture
def auth_settings(monkeypatch):
    monkeypatch.setattr(settings, "DEBUG", False)
    monkeypatch.setattr(settings, "SKIP_HEADER_CHECK", False)
    monkeypatch.setattr(settings, "PROXY_SHARED_SECRET", None)
    return settings


@pytest.mark.parametrize("value,expected", [
    ("alice", "alice"),
    ("  user-123  ", "user-123"),
    ("google-oauth2|1234", "google-oauth2|1234"),
    ("", None),
    (None, None),
    ("bad user", None),
    ("x" * 129, None),
])
def test_get_user_from_header(value, expected):
    assert get_user_from_header(value) == expected


def test_header_user(auth_settings):
    assert resolve_user_id({"x-user-id": "alice"}) == "alice"


def test_missing_header_is_anonymous(auth_settings):
    assert resolve_user_id({}) is None


def test_proxy_secret_required_when_configured(auth_settings, monkeypatch):
    monkeypatch.setattr(settings, "PROXY_SHARED_SECRET", "s3cret")

    assert resolve_user_id({"x-user-id": "alice"}) is None
    assert resolve_user_id({"x-user-id": "alice", "x-proxy-secret": "wrong"}) is None
    assert resolve_user_id({"x-user-id": "alice", "x-proxy-secret": "s3cret"}) == "alice"


def test_debug_mode_falls_back_to_mock_user(auth_settings, monkeypatch):
    monkeypatch.setattr(settings, "DEBUG", True)

    assert resolve_user_id({}) == settings.MOCK_USER_ID
    assert resolve_user_id({"x-user-id": "alice"}) == "alice"


def test_middleware_sets_request_state(client):
    # Anonymous requests can read published data but not mutate
    assert client.put("/lobby/id/abc/join").status_code == 403
    response = client.put("/lobby/id/abc/join", headers={"X-User-Id": "alice"})
    assert response.status_code == 404
