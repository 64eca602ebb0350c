# backend/adega/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate
from .services.broadcast_service import EventBroadcaster


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # One broadcaster per app; tests may inject their own
    broadcaster = app.config.get("BROADCASTER") or EventBroadcaster(
        channel_buffer=app.config["SSE_CHANNEL_BUFFER"]
    )
    app.extensions["broadcaster"] = broadcaster
    if app.config["SSE_HEARTBEAT_ENABLED"] and not app.config.get("TESTING"):
        broadcaster.start_heartbeat(app.config["SSE_HEARTBEAT_SECONDS"])

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp
    from .routes.events import events_bp
    from .routes.catalog import catalog_bp
    from .routes.couriers import couriers_bp
    from .routes.stock import stock_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(events_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(couriers_bp)
    app.register_blueprint(stock_bp)

    allowed_origins = set(app.config["CORS_ALLOWED_ORIGINS"])

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
