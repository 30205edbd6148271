import logging

from flask import Flask, jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.middleware.proxy_fix import ProxyFix

from .config import engine_options, get_config
from .extensions import db, migrate
from .security import SecurityLayer


def create_app(config_overrides: dict | None = None, clock=None, window_store=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(get_config())

    # overrides go in BEFORE db.init_app so SQLAlchemy picks up a test database
    if config_overrides:
        app.config.update(config_overrides)

    if app.config.get("IS_PRODUCTION"):
        app.config["SESSION_COOKIE_SECURE"] = True

    # trust exactly N proxy hops; request.remote_addr is then the address the outermost one saw
    proxy_hops = int(app.config.get("PROXY_FIX_X_FOR", 0))
    if proxy_hops > 0:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=proxy_hops, x_proto=proxy_hops)

    app.config.setdefault(
        "SQLALCHEMY_ENGINE_OPTIONS",
        engine_options(
            app.config["SQLALCHEMY_DATABASE_URI"],
            int(app.config.get("DB_STATEMENT_TIMEOUT_SECONDS", 30)),
        ),
    )

    logging.basicConfig(level=logging.INFO)
    app.logger.info("Asset Manager - init app")

    db.init_app(app)

    # load models so Alembic detects tables / metadata exists
    from . import models  # noqa: F401

    migrate.init_app(app, db)

    security = SecurityLayer(db, app.config, clock=clock, window_store=window_store)
    security.init_app(app)

    from .blueprints.auth.routes import bp as auth_bp
    from .blueprints.api.routes import bp as api_bp
    from .blueprints.admin import bp as admin_bp
    from .blueprints.security.routes import bp as security_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(security_bp)

    from .cli import register_cli

    register_cli(app)

    # -----------------------------
    # Error handlers (JSON)
    # -----------------------------
    @app.errorhandler(400)
    def err_400(e):
        return jsonify(success=False, error="bad_request", message=getattr(e, "description", None)), 400

    @app.errorhandler(401)
    def err_401(e):
        return jsonify(success=False, error="unauthorized"), 401

    @app.errorhandler(403)
    def err_403(e):
        return jsonify(success=False, error="forbidden"), 403

    @app.errorhandler(404)
    def err_404(e):
        return jsonify(success=False, error="not_found"), 404

    @app.errorhandler(405)
    def err_405(e):
        return jsonify(success=False, error="method_not_allowed"), 405

    @app.errorhandler(429)
    def err_429(e):
        return jsonify(success=False, error="too_many_requests"), 429

    @app.errorhandler(500)
    def err_500(e):
        db.session.rollback()
        return jsonify(success=False, error="internal_error"), 500

    @app.get("/health")
    def health():
        return jsonify(status="ok")

    @app.get("/")
    def index():
        return jsonify(name="asset-manager", status="ok")

    if app.config.get("SECURITY_SWEEP_ON_STARTUP"):
        with app.app_context():
            try:
                security.sweep()
            except SQLAlchemyError:
                # tables may not exist yet (fresh install before `flask db upgrade`)
                db.session.rollback()
                app.logger.warning("startup security sweep skipped", exc_info=True)

    return app
