import pytest
from pydantic import ValidationError

from auth_relay.settings import Settings


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("ALLOWED_ORIGINS", "CODE_TTL_SECONDS", "CODE_GRACE_SECONDS", "BIND_CODE_TO_ORIGIN", "ENV"):
        monkeypatch.delenv(f"AUTH_RELAY_{name}", raising=False)

    s = Settings()
    assert s.ALLOWED_ORIGINS == []
    assert not s.allows_any_origin
    assert s.ENV == "local"
    assert s.CODE_TTL_SECONDS == 300
    assert s.CODE_GRACE_SECONDS == 1
    assert s.BIND_CODE_TO_ORIGIN is True


def test_app_builds_with_empty_allow_list(monkeypatch, tmp_path):
    from auth_relay.main import create_app

    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("AUTH_RELAY_ALLOWED_ORIGINS", raising=False)

    app = create_app(Settings())
    assert app.state.coordinator.allowed_origins == []


def test_allowed_origins_from_env(monkeypatch):
    monkeypatch.setenv("AUTH_RELAY_ALLOWED_ORIGINS", '["chrome-extension://abc"]')
    monkeypatch.setenv("AUTH_RELAY_CODE_TTL_SECONDS", "60")
    s = Settings()
    assert s.ALLOWED_ORIGINS == ["chrome-extension://abc"]
    assert s.CODE_TTL_SECONDS == 60
    assert not s.allows_any_origin


def test_wildcard_is_local_only():
    assert Settings(ENV="local", ALLOWED_ORIGINS='["*"]').allows_any_origin
    with pytest.raises(ValidationError):
        Settings(ENV="production", ALLOWED_ORIGINS='["*"]')


def test_ttl_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(CODE_TTL_SECONDS=0)
