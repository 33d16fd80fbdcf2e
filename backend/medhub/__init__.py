# backend/medhub/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.payment_gateway import init_payment_gateway
    init_payment_gateway(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp  # Guest cart, slots, partial checkout
    from .routes.checkout import checkout_bp
    from .routes.confirmation import confirmation_bp
    from .routes.track import track_bp
    from .routes.prescriptions import prescriptions_bp
    from .routes.catalog import catalog_bp
    from .routes.auth import auth_bp  # Provider registration + staff sessions
    from .routes.provider import provider_bp  # Provider back-office
    from .routes.admin import admin_bp
    from .routes.consent import consent_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(confirmation_bp)
    app.register_blueprint(track_bp)
    app.register_blueprint(prescriptions_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(provider_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(consent_bp)

    allowed_origins = set(app.config.get("ALLOWED_ORIGINS") or [])

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, X-Guest-Id"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
