from __future__ import annotations

import asyncio
import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional

from .errors import CodeCollision
from .logger import fingerprint

log = logging.getLogger("auth_relay.store")

Payload = Dict[str, Optional[str]]
ExpiryListener = Callable[[List[str]], None]


def generate_code() -> str:
    return secrets.token_urlsafe(32)


@dataclass(frozen=True)
class ExchangeEntry:
    code: str
    payload: Payload
    expires_at: float
    bound_origin: Optional[str] = None

    def expired(self, now: float) -> bool:
        return now > self.expires_at


class ExchangeStore:
    """
    One-time code exchange store.

    - issue() maps a fresh unguessable code to an opaque payload for `ttl` seconds
    - redeem() takes the entry out in a single locked step, so a code yields its
      payload to at most one caller
    - expired entries are dropped lazily on redeem() and by a periodic sweep that
      runs every `grace_seconds`, so nothing outlives ttl + grace

    In-memory and single-process only.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 300,
        grace_seconds: float = 1,
        clock: Callable[[], float] = time.monotonic,
        code_factory: Callable[[], str] = generate_code,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if grace_seconds <= 0:
            raise ValueError("grace_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self.grace_seconds = grace_seconds
        self._clock = clock
        self._code_factory = code_factory
        self._entries: Dict[str, ExchangeEntry] = {}
        self._lock = threading.Lock()
        self._listeners: List[ExpiryListener] = []
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, code: object) -> bool:
        with self._lock:
            return code in self._entries

    def add_expiry_listener(self, listener: ExpiryListener) -> None:
        """Register a callback receiving the codes removed by each sweep."""
        self._listeners.append(listener)

    def issue(
        self,
        payload: Mapping[str, Optional[str]],
        ttl_seconds: Optional[float] = None,
        *,
        origin: Optional[str] = None,
    ) -> str:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")

        code = self._code_factory()
        entry = ExchangeEntry(
            code=code,
            payload=dict(payload),
            expires_at=self._clock() + ttl,
            bound_origin=origin,
        )
        with self._lock:
            if code in self._entries:
                raise CodeCollision("one-time code already live")
            self._entries[code] = entry

        log.debug("issued code=%s ttl=%s bound_origin=%s", fingerprint(code), ttl, origin)
        return code

    def redeem(self, code: str, *, origin: Optional[str] = None) -> Optional[Payload]:
        """
        Take the payload for `code`, or None when it is unknown, used or expired.

        A code bound to an origin and presented from another one is burned.
        """
        if not code:
            return None

        now = self._clock()
        with self._lock:
            entry = self._entries.pop(code, None)

        if entry is None:
            return None
        if entry.expired(now):
            log.debug("redeem expired code=%s", fingerprint(code))
            return None
        if entry.bound_origin is not None and entry.bound_origin != origin:
            log.warning(
                "redeem origin mismatch code=%s bound=%s presented=%s",
                fingerprint(code),
                entry.bound_origin,
                origin,
            )
            return None
        return dict(entry.payload)

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [c for c, e in self._entries.items() if e.expired(now)]
            for c in expired:
                del self._entries[c]

        if expired:
            log.debug("sweep removed=%d", len(expired))
            for listener in list(self._listeners):
                listener(expired)
        return len(expired)

    # -----------------------------------------------------------------
    # Background sweeping
    # -----------------------------------------------------------------

    @property
    def sweeping(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def start_sweeper(self) -> None:
        if self.sweeping:
            return
        self._sweeper = asyncio.create_task(self._sweep_loop())
        log.info("sweeper started interval=%ss", self.grace_seconds)

    async def stop_sweeper(self) -> None:
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("sweeper stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.grace_seconds)
            try:
                self.sweep()
            except Exception:
                log.exception("sweep failed")


__all__ = ["ExchangeEntry", "ExchangeStore", "Payload", "generate_code"]
