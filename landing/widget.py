"""Signup/login controller.

:class:`SignupWidget` holds the state of the signup modal: field values,
validation messages and the success panel. It drives the login-then-register
flow against an :class:`~landing.identity.IdentityClient`. Side effects go
through three collaborators so the same controller can run behind the web
app or in tests:

``store``
    A :class:`TokenStore` that persists the session token.
``navigate``
    Called with the members-area URL once a token is available.
``schedule``
    Called as ``schedule(delay, callback)`` to run the redirect after a
    successful registration. Defaults to a :class:`threading.Timer`.
"""

from __future__ import annotations

import enum
import json
import logging
import os
import re
import threading
from typing import Callable, Dict, Optional

import requests

from landing.identity import IdentityClient, IdentityError

logger = logging.getLogger(__name__)

TOKEN_KEY = "dating_auth_token"
DEFAULT_MEMBERS_URL = "https://www.dating.com/people/#token={token}"
REDIRECT_DELAY = 2.0
MIN_PASSWORD_LENGTH = 8

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

EMAIL_REQUIRED = "Email is required"
EMAIL_INVALID = "Please enter a valid email address"
PASSWORD_REQUIRED = "Password is required"
PASSWORD_TOO_SHORT = f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
REGISTRATION_FAILED = "Registration failed. Please try again."


class WidgetState(str, enum.Enum):
    ANONYMOUS = "anonymous"
    CHECKING_SESSION = "checking_session"
    MODAL_OPEN = "modal_open"
    SUBMITTING = "submitting"
    AUTHENTICATED = "authenticated"
    REGISTERED_PENDING_REDIRECT = "registered_pending_redirect"


# ---------------------------------------------------------------------------
# Token stores
# ---------------------------------------------------------------------------

class TokenStore:
    """Interface for persisting the session token."""

    def get(self) -> Optional[str]:  # pragma: no cover - interface only
        raise NotImplementedError

    def set(self, token: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def clear(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError


class MemoryTokenStore(TokenStore):
    def __init__(self, token: str | None = None) -> None:
        self.token = token

    def get(self) -> Optional[str]:
        return self.token

    def set(self, token: str) -> None:
        self.token = token

    def clear(self) -> None:
        self.token = None


class FileTokenStore(TokenStore):
    """Keep the token in a small JSON file, keyed like browser local storage."""

    def __init__(self, path: str, key: str = TOKEN_KEY) -> None:
        self.path = path
        self.key = key

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path) as f:
            try:
                data = json.load(f)
            except ValueError:
                logger.warning("Ignoring unreadable token file %s", self.path)
                return {}
        return data if isinstance(data, dict) else {}

    def _dump(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(data, f)

    def get(self) -> Optional[str]:
        return self._load().get(self.key)

    def set(self, token: str) -> None:
        data = self._load()
        data[self.key] = token
        self._dump(data)

    def clear(self) -> None:
        data = self._load()
        if data.pop(self.key, None) is not None:
            self._dump(data)


def _timer_schedule(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

class SignupWidget:
    """Controller for the signup modal and the login-then-register flow."""

    FIELDS = ("email", "password")

    def __init__(
        self,
        client: IdentityClient,
        store: TokenStore,
        navigate: Callable[[str], None],
        schedule: Callable[[float, Callable[[], None]], object] | None = None,
        members_url: str | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.navigate = navigate
        self.schedule = schedule or _timer_schedule
        self.members_url = members_url or os.environ.get(
            "LANDING_MEMBERS_URL", DEFAULT_MEMBERS_URL
        )
        self.state = WidgetState.ANONYMOUS
        self.auth_token = store.get()
        self.values: Dict[str, str] = {}
        self.errors: Dict[str, str] = {}
        self.success_visible = False

    # -- session -----------------------------------------------------------
    def start(self) -> WidgetState:
        """Check a stored token and redirect if the server still honours it."""
        if not self.auth_token:
            return self.state
        self.state = WidgetState.CHECKING_SESSION
        try:
            self.client.check_status(self.auth_token)
        except (IdentityError, requests.RequestException) as exc:
            logger.info("Stored session rejected: %s", exc)
            self.store.clear()
            self.auth_token = None
            self.state = WidgetState.ANONYMOUS
            return self.state
        self.state = WidgetState.AUTHENTICATED
        self.redirect(self.auth_token)
        return self.state

    def redirect(self, token: str) -> None:
        self.navigate(self.members_url.format(token=token))

    # -- modal -------------------------------------------------------------
    @property
    def modal_open(self) -> bool:
        return self.state in (WidgetState.MODAL_OPEN, WidgetState.SUBMITTING)

    def open_modal(self) -> None:
        self.state = WidgetState.MODAL_OPEN

    def close_modal(self) -> None:
        if self.state in (WidgetState.MODAL_OPEN, WidgetState.SUBMITTING):
            self.state = WidgetState.ANONYMOUS
        self.reset_form()

    def handle_key(self, key: str) -> None:
        if key == "Escape" and self.modal_open:
            self.close_modal()

    def reset_form(self) -> None:
        self.values.clear()
        self.errors.clear()
        self.success_visible = False

    # -- validation --------------------------------------------------------
    def validate_email(self, email: str) -> bool:
        if not email:
            self.errors["email"] = EMAIL_REQUIRED
            return False
        if not EMAIL_RE.match(email):
            self.errors["email"] = EMAIL_INVALID
            return False
        self.clear_error("email")
        return True

    def validate_password(self, password: str) -> bool:
        if not password:
            self.errors["password"] = PASSWORD_REQUIRED
            return False
        if len(password) < MIN_PASSWORD_LENGTH:
            self.errors["password"] = PASSWORD_TOO_SHORT
            return False
        self.clear_error("password")
        return True

    def blur(self, field: str, value: str) -> bool:
        """Run the full check for ``field`` as when it loses focus."""
        if field not in self.FIELDS:
            raise ValueError(f"Unknown field: {field}")
        self.values[field] = value
        if field == "email":
            return self.validate_email(value)
        return self.validate_password(value)

    def input(self, field: str, value: str | None = None) -> None:
        """Typing into a field only clears its message."""
        if value is not None:
            self.values[field] = value
        self.clear_error(field)

    def clear_error(self, field: str) -> None:
        self.errors.pop(field, None)

    # -- submission --------------------------------------------------------
    def submit(self, email: str, password: str) -> WidgetState:
        """Validate, then log in or fall back to registration."""
        self.values.update(email=email, password=password)
        email_ok = self.validate_email(email)
        password_ok = self.validate_password(password)
        if not (email_ok and password_ok):
            self.state = WidgetState.MODAL_OPEN
            return self.state

        self.state = WidgetState.SUBMITTING
        try:
            token = self.client.login(email, password)
        except (IdentityError, requests.RequestException) as exc:
            logger.info("Login failed for %s, trying registration: %s", email, exc)
        else:
            self._store_token(token)
            self.state = WidgetState.AUTHENTICATED
            self.redirect(token)
            return self.state

        try:
            token = self.client.register(email, password)
        except (IdentityError, requests.RequestException) as exc:
            logger.warning("Registration failed for %s: %s", email, exc)
            self.errors["email"] = REGISTRATION_FAILED
            self.state = WidgetState.MODAL_OPEN
            return self.state

        self._store_token(token)
        self.success_visible = True
        self.state = WidgetState.REGISTERED_PENDING_REDIRECT
        self.schedule(REDIRECT_DELAY, lambda: self.redirect(token))
        return self.state

    def _store_token(self, token: str) -> None:
        self.auth_token = token
        self.store.set(token)
