import re
from typing import List, Optional

import pytest
from httpx import ASGITransport, AsyncClient

from auth_relay.core.riot_client import RawCredentials
from auth_relay.main import create_app
from auth_relay.settings import Settings

ORIGIN = "chrome-extension://relaytestextensionid"

GOOD_CREDS = RawCredentials(
    access_token="abc",
    id_token="id-123",
    entitlements_token="ent-456",
    subject_id="puuid-789",
    expires_in="3600",
)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBroker:
    def __init__(self, result: Optional[RawCredentials] = GOOD_CREDS, error: Optional[Exception] = None) -> None:
        self.result = result
        self.error = error
        self.calls: List[str] = []

    async def perform_login(self, username: str, password: str) -> RawCredentials:
        self.calls.append(username)
        if self.error is not None:
            raise self.error
        return self.result


def extract_code(html: str) -> str:
    m = re.search(r'"type": "auth-code", "code": "([^"]+)"', html)
    assert m, "completion page carries no auth-code message"
    return m.group(1)


def make_settings(**overrides) -> Settings:
    values = {
        "ALLOWED_ORIGINS": f'["{ORIGIN}"]',
        "RATE_LIMIT_MAX_CALLS": 1000,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def app(broker):
    return create_app(make_settings(), broker=broker)


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
