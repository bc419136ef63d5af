import os

from flask import Flask, abort, send_from_directory

from landing.auth import auth_bp
from landing.auth import init_app as auth_init


def create_app(dist_dir: str | None = None) -> Flask:
    """Return an app serving the built site plus the signup API."""
    if dist_dir is None:
        from landing.static_build import DIST_DIR

        dist_dir = DIST_DIR
    dist_dir = os.path.abspath(dist_dir)

    # Built files are served from the site root so the relative ``css/`` and
    # ``js/`` references in the markup resolve unchanged.
    app = Flask(__name__, static_folder=dist_dir, static_url_path="")
    app.secret_key = os.environ.get("SECRET_KEY", "dev")
    app.config.update(
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        DIST_DIR=dist_dir,
    )
    app.config["SESSION_COOKIE_SECURE"] = (
        os.environ.get("SESSION_COOKIE_SECURE", "false").lower() == "true"
    )

    @app.after_request
    def set_security_headers(response):
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        return response

    @app.route("/")
    def index():
        if not os.path.exists(os.path.join(dist_dir, "index.html")):
            app.logger.warning("index.html missing from %s; run the build first", dist_dir)
            abort(404)
        return send_from_directory(dist_dir, "index.html")

    auth_init(app)
    app.register_blueprint(auth_bp)
    return app
