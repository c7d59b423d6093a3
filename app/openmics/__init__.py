import logging
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from app.openmics.config import load_config
from app.openmics.db import init_db, teardown_db_session
from app.openmics.errors import StoreError, VersionConflict
from app.openmics.routes import bp as routes_bp
from app.openmics.auth import bp as auth_bp, load_current_user
from app.openmics.modules.mics.api import bp as mics_bp
from app.openmics.apidocs import bp as apidocs_bp

# Status code the HTTP layer uses for each store error kind.
ERROR_STATUS = {
    "NotFound": 404,
    "VersionConflict": 409,
    "Unauthorized": 401,
    "ValidationError": 400,
    "InternalError": 500,
}


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.logger.setLevel(app.config["LOG_LEVEL"])
    logging.getLogger("app.openmics").setLevel(app.config["LOG_LEVEL"])

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(mics_bp)
    app.register_blueprint(apidocs_bp)

    # The calendar SPA is served from its own origin. Session cookies only travel
    # cross-origin when the allowed origins are explicit.
    origins = app.config["CORS_ORIGINS"] or ["*"]
    CORS(app, origins=origins, supports_credentials="*" not in origins)

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(StoreError)
    def _store_error(e: StoreError):  # type: ignore[no-redef]
        status = ERROR_STATUS.get(e.kind, 500)
        body = {"error": e.kind, "message": str(e)}
        if isinstance(e, VersionConflict):
            body["currentVersion"] = e.actual
        if status >= 500:
            app.logger.error("Store failure %s (request_id=%s): %s", e.kind, getattr(g, "request_id", None), e)
        return jsonify(body), status

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):  # type: ignore[no-redef]
        if e.code == 404:
            return jsonify({"error": "resource not found"}), 404
        return jsonify({"error": (e.name or "error").lower(), "message": e.description}), e.code

    @app.errorhandler(Exception)
    def _err_500(e):  # type: ignore[no-redef]
        # Ensure stack trace shows in logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "internal server error"}), 500

    # Startup logging
    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
