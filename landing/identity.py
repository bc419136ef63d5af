"""HTTP client for the remote identity endpoint.

The endpoint authenticates with ``GET`` and HTTP Basic credentials, and
registers new accounts with ``PUT`` and a JSON body. Both return the session
token in the ``X-Token`` response header.
"""

from __future__ import annotations

import logging
import os

import requests

logger = logging.getLogger(__name__)

DEFAULT_IDENTITY_URL = "https://api.dating.com/identity"
TOKEN_HEADER = "X-Token"


class IdentityError(Exception):
    """Raised when the identity endpoint rejects a request."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class IdentityClient:
    """Thin wrapper around the identity endpoint."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None) -> None:
        self.base_url = base_url or os.environ.get(
            "LANDING_IDENTITY_URL", DEFAULT_IDENTITY_URL
        )
        self.timeout = timeout if timeout is not None else float(
            os.environ.get("LANDING_IDENTITY_TIMEOUT", "10")
        )

    def _token(self, resp, failure: str) -> str:
        token = resp.headers.get(TOKEN_HEADER)
        if not token:
            raise IdentityError(f"{failure}: missing {TOKEN_HEADER}", resp.status_code)
        return token

    def login(self, email: str, password: str) -> str:
        """Return a token for valid credentials."""
        resp = requests.get(
            self.base_url,
            auth=(email.encode("utf-8"), password.encode("utf-8")),
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )
        if not resp.ok:
            raise IdentityError("Authentication failed", resp.status_code)
        return self._token(resp, "Authentication failed")

    def register(self, email: str, password: str) -> str:
        """Create an account and return its token."""
        resp = requests.put(
            self.base_url,
            json={"email": email, "password": password},
            timeout=self.timeout,
        )
        if not resp.ok:
            try:
                data = resp.json()
            except ValueError:
                data = {}
            message = data.get("message") if isinstance(data, dict) else None
            raise IdentityError(message or "Registration failed", resp.status_code)
        return self._token(resp, "Registration failed")

    def check_status(self, token: str) -> None:
        """Raise :class:`IdentityError` unless ``token`` is still honoured."""
        resp = requests.get(
            self.base_url,
            headers={
                "Authorization": f"Basic {token}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
        )
        if not resp.ok:
            raise IdentityError("Session expired", resp.status_code)
