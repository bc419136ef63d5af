import os

from flask import Blueprint, current_app, jsonify, request, session

from landing.identity import DEFAULT_IDENTITY_URL, IdentityClient
from landing.widget import (
    DEFAULT_MEMBERS_URL,
    REDIRECT_DELAY,
    REGISTRATION_FAILED,
    TOKEN_KEY,
    SignupWidget,
    TokenStore,
    WidgetState,
)

auth_bp = Blueprint('auth', __name__)


class SessionTokenStore(TokenStore):
    """Token store backed by the Flask session cookie."""

    def get(self):
        return session.get(TOKEN_KEY)

    def set(self, token):
        session[TOKEN_KEY] = token

    def clear(self):
        session.pop(TOKEN_KEY, None)


def init_app(app):
    """Initialize identity endpoint config."""
    app.config['IDENTITY_URL'] = os.environ.get('LANDING_IDENTITY_URL', DEFAULT_IDENTITY_URL)
    app.config['IDENTITY_TIMEOUT'] = float(os.environ.get('LANDING_IDENTITY_TIMEOUT', 10))
    app.config['MEMBERS_URL'] = os.environ.get('LANDING_MEMBERS_URL', DEFAULT_MEMBERS_URL)


def _widget():
    """Build a widget for this request; navigation and timers are captured."""
    captured = {}

    def navigate(url):
        captured['redirect'] = url

    def schedule(delay, callback):
        captured['redirect_after'] = delay
        callback()

    client = IdentityClient(
        current_app.config['IDENTITY_URL'], current_app.config['IDENTITY_TIMEOUT']
    )
    widget = SignupWidget(
        client,
        SessionTokenStore(),
        navigate,
        schedule=schedule,
        members_url=current_app.config['MEMBERS_URL'],
    )
    return widget, captured


@auth_bp.post('/api/auth/login')
def api_login():
    """Log in, or register when the credentials are unknown."""
    data = request.get_json(silent=True) or request.form
    email = data.get('email') or ''
    password = data.get('password') or ''

    widget, captured = _widget()
    widget.open_modal()
    state = widget.submit(email, password)

    if state == WidgetState.AUTHENTICATED:
        return jsonify(status='authenticated', redirect=captured['redirect'])
    if state == WidgetState.REGISTERED_PENDING_REDIRECT:
        return jsonify(
            status='registered',
            redirect=captured['redirect'],
            redirect_after=captured.get('redirect_after', REDIRECT_DELAY),
        )
    status = 401 if widget.errors.get('email') == REGISTRATION_FAILED else 400
    return jsonify(errors=widget.errors), status


@auth_bp.get('/api/auth/status')
def status():
    """Redirect target for a still-valid session, else anonymous."""
    widget, captured = _widget()
    state = widget.start()
    if state == WidgetState.AUTHENTICATED:
        return jsonify(status='authenticated', redirect=captured['redirect'])
    return jsonify(status='anonymous')


@auth_bp.post('/api/auth/logout')
def logout():
    """Forget the stored session token."""
    SessionTokenStore().clear()
    return jsonify(status='ok')
