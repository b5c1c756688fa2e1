import logging
from datetime import timedelta

from flask import Flask, g, jsonify, request, session
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect

from app.console.config import load_config
from app.console.db import init_db, teardown_db_session
from app.console.routes import bp as routes_bp
from app.console.auth import bp as auth_bp, load_current_user
from app.console.admin import bp as admin_bp
from app.console.modules.metafields.admin import bp as metafields_bp

# Tables and columns the running code expects; checked once on first admin request.
_EXPECTED_SCHEMA = {
    "metafield_definitions": ("owner_type", "namespace", "key", "value_type", "is_list", "validations_json", "visibility_json"),
    "metafield_values": ("definition_id", "owner_id", "value_json"),
    "users": ("is_staff",),
}


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    app.logger.setLevel(app.config["LOG_LEVEL"])
    logging.getLogger("app.console").setLevel(app.config["LOG_LEVEL"])

    from app.console.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Allow auth endpoints to pass through (login/logout)
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return jsonify({"error": "CSRF token missing or invalid."}), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
    if not app.config.get("METAFIELD_OWNER_TYPES"):
        raise RuntimeError("METAFIELD_OWNER_TYPES must list at least one owner type.")

    init_db(app)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(metafields_bp, url_prefix="/admin")

    def _load_user_wrapper():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Migration health (lean): detect drift between code expectations and DB schema.
    app.config.setdefault("_schema_health_ok", None)
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> None:
        missing: list[str] = []
        engine = app.extensions["sqlalchemy_engine"]
        insp = sa_inspect(engine)
        for table, columns in _EXPECTED_SCHEMA.items():
            if not insp.has_table(table):
                missing.append(f"{table} (table)")
                continue
            present = {c["name"] for c in insp.get_columns(table)}
            missing.extend(f"{table}.{col}" for col in columns if col not in present)

        if missing:
            app.config["_schema_health_missing"] = missing
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))
        app.config["_schema_health_ok"] = not missing

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if not request.path.startswith("/admin"):
            return None
        if not app.config.get("_schema_health_ok"):
            _run_schema_health_check()
        if app.config.get("_schema_health_ok"):
            return None
        return jsonify({"error": "Database schema out of date.", "missing": app.config.get("_schema_health_missing") or []}), 500

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        # Ensure stack trace shows in logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "Internal server error."}), 500

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return jsonify({"error": "Forbidden.", "missing_permission": missing}), 403

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return jsonify({"error": "Not found."}), 404

    @app.errorhandler(400)
    def _err_400(e):  # type: ignore[no-redef]
        return jsonify({"error": "Bad request."}), 400

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return jsonify({"error": "Request body too large."}), 413

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
