"""Exception hierarchy shared across layers.

Callers can catch ClawbridgeError broadly or the specific subclasses below.
"""

from __future__ import annotations


class ClawbridgeError(Exception):
    """Base exception for all clawbridge errors."""


class CredentialMissingError(ClawbridgeError):
    """Raised when a backend call is attempted without a configured credential."""


class BackendError(ClawbridgeError):
    """Raised when a backend answers with a non-success status.

    The upstream status and body are kept verbatim so they can be relayed.
    """

    def __init__(self, status: int, body: str, message: str | None = None) -> None:
        self.status = status
        self.body = body
        super().__init__(message or f"Backend error ({status}): {body}")


class TokenExchangeError(BackendError):
    """Raised when the credential cannot be exchanged for a bearer token."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(status, body, f"Token exchange failed ({status}): {body}")
