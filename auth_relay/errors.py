from __future__ import annotations


class HandoffError(Exception):
    """Base class for every failure raised by the handoff flow."""


class LoginFailed(HandoffError):
    """The external authority rejected the login or could not be reached."""

    def __init__(self, reason: str = "login_failed") -> None:
        super().__init__(reason)
        self.reason = reason


class IncompleteCredential(LoginFailed):
    """Login nominally succeeded but the access token is absent."""

    def __init__(self, reason: str = "incomplete_credential") -> None:
        super().__init__(reason)


class CodeNotFound(HandoffError):
    """Never issued, already redeemed or expired. Callers cannot tell which."""


class MissingCode(HandoffError):
    """Redemption was requested without a code."""


class OriginNotAllowed(HandoffError):
    def __init__(self, origin: str) -> None:
        super().__init__(f"origin not allowed: {origin}")
        self.origin = origin


# Programming errors. These are never caught by the service.

class CodeCollision(RuntimeError):
    pass


class InvalidTransition(RuntimeError):
    pass


__all__ = [
    "HandoffError",
    "LoginFailed",
    "IncompleteCredential",
    "CodeNotFound",
    "MissingCode",
    "OriginNotAllowed",
    "CodeCollision",
    "InvalidTransition",
]
