import atexit
import os
import secrets

from flask import Flask, abort, request, session

from .clock import advance_to, start_clock_watcher, stop_clock_watcher
from .extensions import cache
from .ledger import bootstrap_network
from .models import db

TRUTHY = ("1", "true", "yes", "on")


def create_app(test_config=None):
    app = Flask(__name__)
    # Use a stable secret so session cookies remain valid across reloads
    app.config["SECRET_KEY"] = os.environ.get(
        "FLASK_SECRET_KEY", "dev-secret-key-change-me"
    )
    # Database & Cache config
    app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get(
        "DATABASE_URL", "sqlite:///capsule.db"
    )
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["CACHE_TYPE"] = os.environ.get("CACHE_TYPE", "SimpleCache")
    app.config.setdefault("CACHE_DEFAULT_TIMEOUT", 60)
    # Security settings
    app.config["SESSION_COOKIE_SAMESITE"] = os.environ.get(
        "SESSION_COOKIE_SAMESITE", "Lax"
    )
    app.config["SESSION_COOKIE_SECURE"] = (
        os.environ.get("SESSION_COOKIE_SECURE", "0") in TRUTHY
    )
    app.config["CSRF_ENABLED"] = os.environ.get("CAPSULE_CSRF", "1") in TRUTHY
    # Login proof freshness window (seconds)
    try:
        app.config["LOGIN_MAX_SKEW"] = int(
            os.environ.get("CAPSULE_LOGIN_MAX_SKEW", "120")
        )
    except ValueError:
        app.config["LOGIN_MAX_SKEW"] = 120
    # Network admin is only applied when the network row is first created
    app.config["NETWORK_ADMIN"] = os.environ.get("CAPSULE_ADMIN", "").strip().lower()
    # Clock watcher (follows the Hive head block)
    app.config["HIVE_NODES"] = os.environ.get("HIVE_NODES", "").strip()
    app.config["CLOCK_WATCHER"] = os.environ.get("CAPSULE_WATCHER", "1") in TRUTHY
    try:
        app.config["WATCHER_SLEEP_SEC"] = float(
            os.environ.get("CAPSULE_WATCHER_SLEEP_SEC", "3.0")
        )
    except ValueError:
        app.config["WATCHER_SLEEP_SEC"] = 3.0
    # Optional: a capsule.selector.RandomSelector instance for discovery
    app.config["DISCOVERY_SELECTOR"] = None

    if test_config is not None:
        app.config.update(test_config)

    if not app.config["NETWORK_ADMIN"]:
        raise RuntimeError("CAPSULE_ADMIN must name the network admin account")

    db.init_app(app)
    cache.init_app(app)

    from .api import api_bp

    app.register_blueprint(api_bp, url_prefix="/api/v1")

    with app.app_context():
        db.create_all()
        bootstrap_network(db.session, app.config["NETWORK_ADMIN"])
        advance_to(0)

    # --- CSRF token setup and validation ---
    @app.before_request
    def _ensure_csrf_token():
        if "csrf_token" not in session:
            session["csrf_token"] = secrets.token_urlsafe(32)

    @app.after_request
    def _set_csrf_cookie(resp):
        # Double-submit cookie for clients to read and send back in header
        token = session.get("csrf_token", "")
        resp.set_cookie(
            "XSRF-TOKEN",
            token,
            samesite="Lax",
            secure=app.config.get("SESSION_COOKIE_SECURE", False),
            httponly=False,
            path="/",
        )
        return resp

    @app.before_request
    def _csrf_protect():
        if not app.config.get("CSRF_ENABLED", True):
            return None
        if request.method in (
            "POST",
            "PUT",
            "PATCH",
            "DELETE",
        ) and request.path.startswith("/api/v1/"):
            hdr = request.headers.get("X-CSRF-Token", "")
            cky = request.cookies.get("XSRF-TOKEN", "")
            tok = session.get("csrf_token", "")
            if not tok or hdr != tok or cky != tok:
                return abort(403)
        return None

    start_clock_watcher(app)
    atexit.register(stop_clock_watcher)

    return app
