import logging
import uuid

from flask import Flask, g, jsonify
from dotenv import load_dotenv

from app.boards.config import load_config
from app.boards.db import init_db, position_column_problems, teardown_db_session
from app.boards.routes import bp as routes_bp
from app.boards.modules.cards.api import bp as cards_bp
from app.boards.modules.cards.service import init_ordering

logger = logging.getLogger(__name__)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    if app.config["POSITION_SPACING"] <= app.config["POSITION_MIN_GAP"]:
        raise RuntimeError("POSITION_SPACING must be larger than POSITION_MIN_GAP.")

    init_db(app)
    init_ordering(app)

    app.register_blueprint(routes_bp)
    app.register_blueprint(cards_bp, url_prefix="/api")

    @app.before_request
    def _assign_request_id():
        if not getattr(g, "request_id", None):
            g.request_id = uuid.uuid4().hex

    app.teardown_appcontext(teardown_db_session)

    # Schema health (lean): warn loudly instead of failing so /health stays reachable.
    app.config.setdefault("_schema_health_ok", True)
    app.config.setdefault("_schema_health_missing", [])

    try:
        missing = position_column_problems(app.extensions["sqlalchemy_engine"])
    except Exception as e:
        app.logger.exception("Schema health check failed: %s", e)
        missing = []
    if missing:
        app.config["_schema_health_ok"] = False
        app.config["_schema_health_missing"] = missing
        app.logger.error("DB schema out of date; run `alembic upgrade head`. Problems: %s", ", ".join(missing))

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "internal_error"}), 500

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return jsonify({"error": "not_found"}), 404

    @app.errorhandler(400)
    def _err_400(e):  # type: ignore[no-redef]
        return jsonify({"error": "bad_request"}), 400

    logger.info("create_app() complete; app ready to serve")

    return app
