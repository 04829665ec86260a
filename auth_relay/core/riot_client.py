from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
from urllib.parse import parse_qs, urlparse

import httpx

from ..errors import LoginFailed
from ..settings import Settings

log = logging.getLogger("auth_relay.riot")


@dataclass(frozen=True)
class RawCredentials:
    access_token: Optional[str]
    id_token: Optional[str] = None
    entitlements_token: Optional[str] = None
    subject_id: Optional[str] = None
    expires_in: Optional[str] = None


def parse_token_fragment(uri: str) -> Dict[str, Optional[str]]:
    """
    Pull the implicit-grant tokens out of a redirect uri fragment:
    https://playvalorant.com/opt_in#access_token=...&id_token=...&expires_in=3600
    """
    fragment = urlparse(uri or "").fragment
    if not fragment:
        return {}
    qs = parse_qs(fragment)
    return {
        "access_token": (qs.get("access_token") or [None])[0],
        "id_token": (qs.get("id_token") or [None])[0],
        "expires_in": (qs.get("expires_in") or [None])[0],
    }


class RiotLoginBroker:
    """
    Username/password login against Riot's (non-official) auth endpoints.

    These endpoints are community documented and may change at any time.
    Every failure, including transport errors, surfaces as LoginFailed.
    """

    def __init__(
        self,
        *,
        auth_url: str,
        entitlements_url: str,
        userinfo_url: str,
        client_id: str,
        redirect_uri: str,
        timeout_seconds: float = 10,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ) -> None:
        self.auth_url = auth_url
        self.entitlements_url = entitlements_url
        self.userinfo_url = userinfo_url
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.timeout_seconds = timeout_seconds
        self._client_factory = client_factory or self._default_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "RiotLoginBroker":
        return cls(
            auth_url=str(settings.RIOT_AUTH_URL),
            entitlements_url=str(settings.RIOT_ENTITLEMENTS_URL),
            userinfo_url=str(settings.RIOT_USERINFO_URL),
            client_id=settings.RIOT_CLIENT_ID,
            redirect_uri=settings.RIOT_REDIRECT_URI,
            timeout_seconds=settings.RIOT_TIMEOUT_SECONDS,
        )

    def _default_client(self) -> httpx.AsyncClient:
        # one client per login so the auth cookies set by the init call are sent with the credentials
        return httpx.AsyncClient(timeout=self.timeout_seconds, follow_redirects=False)

    async def perform_login(self, username: str, password: str) -> RawCredentials:
        try:
            async with self._client_factory() as client:
                return await self._login(client, username, password)
        except LoginFailed:
            raise
        except httpx.HTTPStatusError as e:
            log.warning(
                "riot login http error url=%s status=%s",
                e.request.url,
                e.response.status_code,
            )
            raise LoginFailed("authority_error") from e
        except httpx.HTTPError as e:
            log.warning("riot login transport error err=%s", type(e).__name__)
            raise LoginFailed("authority_unreachable") from e
        except ValueError as e:
            log.warning("riot login malformed response err=%s", e)
            raise LoginFailed("malformed_response") from e

    async def _login(self, client: httpx.AsyncClient, username: str, password: str) -> RawCredentials:
        init = await client.post(
            self.auth_url,
            json={
                "client_id": self.client_id,
                "nonce": "1",
                "redirect_uri": self.redirect_uri,
                "response_type": "token id_token",
                "scope": "account openid",
            },
        )
        init.raise_for_status()

        resp = await client.put(
            self.auth_url,
            json={"type": "auth", "username": username, "password": password, "remember": False},
        )
        if resp.status_code >= 500:
            resp.raise_for_status()
        data = _json_object(resp)

        error = data.get("error")
        if error:
            log.info("riot login rejected error=%s", error)
            raise LoginFailed(str(error))
        if data.get("type") == "multifactor":
            log.info("riot login requires multifactor")
            raise LoginFailed("multifactor_required")

        uri = _nested(data, "response", "parameters", "uri") or ""
        if not isinstance(uri, str):
            raise ValueError("redirect uri is not a string")
        tokens = parse_token_fragment(uri)
        access_token = tokens.get("access_token")

        entitlements_token: Optional[str] = None
        subject_id: Optional[str] = None
        if access_token:
            headers = {"Authorization": f"Bearer {access_token}"}

            ent = await client.post(self.entitlements_url, json={}, headers=headers)
            ent.raise_for_status()
            ent_data = _json_object(ent)
            entitlements_token = ent_data.get("entitlements_token") or ent_data.get("token")

            ui = await client.post(self.userinfo_url, headers=headers)
            ui.raise_for_status()
            ui_data = _json_object(ui)
            subject_id = ui_data.get("sub") or ui_data.get("puuid")

        log.info(
            "riot login done access_token=%s entitlements=%s subject=%s",
            bool(access_token),
            bool(entitlements_token),
            bool(subject_id),
        )
        return RawCredentials(
            access_token=access_token,
            id_token=tokens.get("id_token"),
            entitlements_token=entitlements_token,
            subject_id=subject_id,
            expires_in=tokens.get("expires_in"),
        )


def _json_object(resp: httpx.Response) -> Dict[str, Any]:
    data = resp.json()
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object from {resp.request.url}")
    return data


def _nested(data: Dict[str, Any], *keys: str) -> Any:
    """Walk `keys` into nested objects; a missing level yields None, a non-object level is malformed."""
    value: Any = data
    for key in keys:
        if value is None:
            return None
        if not isinstance(value, dict):
            raise ValueError(f"expected an object above {key!r}")
        value = value.get(key)
    return value


__all__ = ["RawCredentials", "RiotLoginBroker", "parse_token_fragment"]
