"""
Requester-side half of the handoff.

The login popup posts ``{"type": "auth-code", "code": ...}`` to the window that
opened it. ``OneShotChannel`` stands in for that listener: it accepts one such
message from the expected origin and ignores everything else. ``ClientRelay``
then trades the code for the token payload at ``GET /token`` and persists it
through a ``TokenSink``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol

import httpx

from .errors import CodeNotFound, IncompleteCredential, MissingCode
from .logger import fingerprint

log = logging.getLogger("auth_relay.client")

AUTH_CODE_MESSAGE = "auth-code"


class OneShotChannel:
    def __init__(self, *, expected_origin: str, message_type: str = AUTH_CODE_MESSAGE) -> None:
        self.expected_origin = expected_origin
        self.message_type = message_type
        self._code: Optional[str] = None
        self._event = asyncio.Event()

    @property
    def delivered(self) -> bool:
        return self._code is not None

    def deliver(self, message: Any, origin: str) -> bool:
        """Offer a message; returns True only for the first acceptable one."""
        if self.delivered:
            return False
        if origin != self.expected_origin:
            log.warning("channel ignored message from origin=%s", origin)
            return False
        if not isinstance(message, Mapping) or message.get("type") != self.message_type:
            return False
        code = message.get("code")
        if not isinstance(code, str) or not code:
            return False
        self._code = code
        self._event.set()
        return True

    async def receive(self, timeout: Optional[float] = None) -> str:
        await asyncio.wait_for(self._event.wait(), timeout)
        code = self._code
        if code is None:
            raise RuntimeError("channel signalled without a code")
        return code


class TokenSink(Protocol):
    def save(self, tokens: Mapping[str, Optional[str]]) -> None:
        ...

    def load(self) -> Dict[str, str]:
        ...

    def clear(self) -> None:
        ...


class JsonFileTokenSink:
    """Keeps the redeemed tokens in a local JSON file."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def save(self, tokens: Mapping[str, Optional[str]]) -> None:
        data = {k: v for k, v in tokens.items() if v}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data), encoding="utf-8")

    def load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        return json.loads(self.path.read_text(encoding="utf-8"))

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class ClientRelay:
    def __init__(
        self,
        base_url: str,
        *,
        sink: TokenSink,
        origin: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout_seconds: float = 10,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.sink = sink
        self.origin = origin
        self._transport = transport
        self.timeout_seconds = timeout_seconds

    async def redeem(self, code: str) -> Dict[str, Optional[str]]:
        if not code:
            raise MissingCode()

        headers = {"Accept": "application/json"}
        if self.origin:
            headers["Origin"] = self.origin

        async with httpx.AsyncClient(
            base_url=self.base_url,
            transport=self._transport,
            timeout=self.timeout_seconds,
        ) as client:
            resp = await client.get("/token", params={"code": code}, headers=headers)

        if resp.status_code == 404:
            raise CodeNotFound()
        if resp.status_code == 400:
            raise MissingCode()
        resp.raise_for_status()

        payload = resp.json()
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise IncompleteCredential("no access token in response")
        return payload

    async def handle_message(self, message: Any, origin: str, channel: OneShotChannel) -> Optional[Dict[str, Optional[str]]]:
        """postMessage handler: redeem and persist on the first valid auth-code message."""
        if not channel.deliver(message, origin):
            return None
        code = await channel.receive()
        payload = await self.redeem(code)
        self.sink.save(payload)
        log.info("tokens saved from code=%s", fingerprint(code))
        return payload

    def logout(self) -> None:
        self.sink.clear()


__all__ = [
    "AUTH_CODE_MESSAGE",
    "ClientRelay",
    "JsonFileTokenSink",
    "OneShotChannel",
    "TokenSink",
]
