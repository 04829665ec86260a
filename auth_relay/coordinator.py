from __future__ import annotations

import enum
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from .core.riot_client import RawCredentials
from .errors import (
    CodeNotFound,
    IncompleteCredential,
    InvalidTransition,
    LoginFailed,
    MissingCode,
    OriginNotAllowed,
)
from .exchange_store import ExchangeStore, Payload
from .logger import fingerprint

log = logging.getLogger("auth_relay.coordinator")


class LoginBroker(Protocol):
    async def perform_login(self, username: str, password: str) -> RawCredentials:
        ...


class HandoffState(str, enum.Enum):
    IDLE = "idle"
    LOGIN_IN_FLIGHT = "login_in_flight"
    AUTHENTICATED = "authenticated"
    CODE_ISSUED = "code_issued"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (HandoffState.REDEEMED, HandoffState.EXPIRED, HandoffState.FAILED)


_TRANSITIONS: Dict[HandoffState, frozenset] = {
    HandoffState.IDLE: frozenset({HandoffState.LOGIN_IN_FLIGHT}),
    HandoffState.LOGIN_IN_FLIGHT: frozenset({HandoffState.AUTHENTICATED, HandoffState.FAILED}),
    HandoffState.AUTHENTICATED: frozenset({HandoffState.CODE_ISSUED, HandoffState.FAILED}),
    HandoffState.CODE_ISSUED: frozenset({HandoffState.REDEEMED, HandoffState.EXPIRED}),
    HandoffState.REDEEMED: frozenset(),
    HandoffState.EXPIRED: frozenset(),
    HandoffState.FAILED: frozenset(),
}


@dataclass
class HandoffAttempt:
    attempt_id: str
    target_origin: str
    redirect: Optional[str]
    created_at: float
    state: HandoffState = HandoffState.IDLE
    code: Optional[str] = None
    code_expires_at: Optional[float] = None
    bound_origin: Optional[str] = None
    history: List[HandoffState] = field(default_factory=list)

    def advance(self, new: HandoffState) -> None:
        if new not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {new.value}")
        self.history.append(self.state)
        self.state = new


@dataclass(frozen=True)
class LoginHandle:
    attempt_id: str
    target_origin: str
    redirect: Optional[str]


def assemble_payload(creds: RawCredentials) -> Payload:
    return {
        "access_token": creds.access_token,
        "id_token": creds.id_token,
        "entitlements_token": creds.entitlements_token,
        "puuid": creds.subject_id,
    }


class HandoffCoordinator:
    """
    Drives one handoff per login attempt:

        begin_login -> (user submits form) -> complete_login -> code
        code travels to the opener via postMessage -> redeem(code) -> payload

    Attempts are single use. A code is minted only for a credential carrying an
    access token, and never while a store lock is held across the broker call.
    """

    def __init__(
        self,
        *,
        store: ExchangeStore,
        broker: LoginBroker,
        allowed_origins: Sequence[str],
        code_ttl_seconds: float = 300,
        login_window_seconds: float = 600,
        bind_code_to_origin: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.broker = broker
        self.allowed_origins = list(allowed_origins)
        self.code_ttl_seconds = code_ttl_seconds
        self.login_window_seconds = login_window_seconds
        self.bind_code_to_origin = bind_code_to_origin
        self._clock = clock
        self._attempts: Dict[str, HandoffAttempt] = {}
        self._by_code: Dict[str, str] = {}
        self._lock = threading.Lock()
        store.add_expiry_listener(self._on_codes_expired)

    # -----------------------------------------------------------------
    # Origins
    # -----------------------------------------------------------------

    def resolve_origin(self, origin: Optional[str]) -> str:
        o = (origin or "").strip()
        if not o:
            if not self.allowed_origins:
                raise OriginNotAllowed("")
            return self.allowed_origins[0]
        if o in self.allowed_origins:
            return o
        if "*" in self.allowed_origins:
            # local development only; settings refuse a wildcard elsewhere
            return o
        raise OriginNotAllowed(o)

    # -----------------------------------------------------------------
    # Login
    # -----------------------------------------------------------------

    def begin_login(self, redirect_hint: Optional[str] = None, *, origin: Optional[str] = None) -> LoginHandle:
        target_origin = self.resolve_origin(origin)
        self.sweep()
        attempt = HandoffAttempt(
            attempt_id=uuid.uuid4().hex,
            target_origin=target_origin,
            redirect=redirect_hint or None,
            created_at=self._clock(),
        )
        with self._lock:
            self._attempts[attempt.attempt_id] = attempt

        log.info("begin_login attempt=%s origin=%s", attempt.attempt_id, target_origin)
        return LoginHandle(
            attempt_id=attempt.attempt_id,
            target_origin=target_origin,
            redirect=attempt.redirect,
        )

    def attempt_state(self, attempt_id: str) -> Optional[HandoffState]:
        with self._lock:
            attempt = self._attempts.get(attempt_id)
        return attempt.state if attempt else None

    def target_origin(self, attempt_id: str) -> Optional[str]:
        with self._lock:
            attempt = self._attempts.get(attempt_id)
        return attempt.target_origin if attempt else None

    def _start_attempt(self, attempt_id: str) -> HandoffAttempt:
        now = self._clock()
        with self._lock:
            attempt = self._attempts.get(attempt_id or "")
            if attempt is None or attempt.state is not HandoffState.IDLE:
                raise LoginFailed("unknown_attempt")
            if now - attempt.created_at > self.login_window_seconds:
                del self._attempts[attempt_id]
                raise LoginFailed("attempt_expired")
            attempt.advance(HandoffState.LOGIN_IN_FLIGHT)
        return attempt

    def _fail(self, attempt: HandoffAttempt, reason: str) -> None:
        with self._lock:
            attempt.advance(HandoffState.FAILED)
            self._attempts.pop(attempt.attempt_id, None)
        log.info("login failed attempt=%s reason=%s", attempt.attempt_id, reason)

    async def complete_login(self, attempt_id: str, username: str, password: str) -> str:
        attempt = self._start_attempt(attempt_id)

        try:
            creds = await self.broker.perform_login(username, password)
        except LoginFailed as e:
            self._fail(attempt, e.reason)
            raise
        except Exception as e:
            log.exception("broker raised unexpectedly attempt=%s", attempt.attempt_id)
            self._fail(attempt, "broker_error")
            raise LoginFailed("broker_error") from e

        if not creds.access_token:
            self._fail(attempt, "incomplete_credential")
            raise IncompleteCredential()

        with self._lock:
            attempt.advance(HandoffState.AUTHENTICATED)

        bind = self.bind_code_to_origin and attempt.target_origin != "*"
        bound_origin = attempt.target_origin if bind else None
        code = self.store.issue(assemble_payload(creds), self.code_ttl_seconds, origin=bound_origin)

        with self._lock:
            attempt.advance(HandoffState.CODE_ISSUED)
            attempt.code = code
            attempt.bound_origin = bound_origin
            attempt.code_expires_at = self._clock() + self.code_ttl_seconds
            self._by_code[code] = attempt.attempt_id

        log.info("code issued attempt=%s code=%s", attempt.attempt_id, fingerprint(code))
        return code

    # -----------------------------------------------------------------
    # Redemption
    # -----------------------------------------------------------------

    def redeem(self, code: Optional[str], *, origin: Optional[str] = None) -> Payload:
        if not code:
            raise MissingCode()

        payload = self.store.redeem(code, origin=origin)
        attempt = self._settle(code, HandoffState.REDEEMED if payload is not None else HandoffState.EXPIRED)

        if payload is None:
            if attempt is not None and attempt.bound_origin is not None and attempt.bound_origin != origin:
                # the attempt still settles as expired; the client sees the same 404
                log.warning(
                    "code burned on origin mismatch attempt=%s code=%s bound=%s presented=%s",
                    attempt.attempt_id,
                    fingerprint(code),
                    attempt.bound_origin,
                    origin,
                )
            else:
                log.info("redeem not found code=%s", fingerprint(code))
            raise CodeNotFound()
        log.info("redeemed code=%s", fingerprint(code))
        return payload

    def _settle(self, code: str, final: HandoffState) -> Optional[HandoffAttempt]:
        with self._lock:
            attempt_id = self._by_code.pop(code, None)
            attempt = self._attempts.pop(attempt_id, None) if attempt_id else None
            if attempt is not None and attempt.state is HandoffState.CODE_ISSUED:
                attempt.advance(final)
        return attempt

    def _on_codes_expired(self, codes: List[str]) -> None:
        for code in codes:
            self._settle(code, HandoffState.EXPIRED)

    # -----------------------------------------------------------------
    # Housekeeping
    # -----------------------------------------------------------------

    def sweep(self) -> int:
        """Expire overdue attempts and forget abandoned ones."""
        now = self._clock()
        removed = 0
        with self._lock:
            for attempt_id, attempt in list(self._attempts.items()):
                if attempt.state is HandoffState.CODE_ISSUED:
                    if attempt.code_expires_at is not None and now > attempt.code_expires_at:
                        attempt.advance(HandoffState.EXPIRED)
                        self._by_code.pop(attempt.code or "", None)
                        del self._attempts[attempt_id]
                        removed += 1
                elif now - attempt.created_at > self.login_window_seconds:
                    del self._attempts[attempt_id]
                    removed += 1
        if removed:
            log.debug("coordinator sweep removed=%d", removed)
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._attempts)


__all__ = [
    "HandoffAttempt",
    "HandoffCoordinator",
    "HandoffState",
    "LoginBroker",
    "LoginHandle",
    "assemble_payload",
]
