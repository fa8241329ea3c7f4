# backend/pharmacy/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate, feeds



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    feeds.init_app(app)

    from .services.cart_service import CartRegistry
    app.extensions["cart_registry"] = CartRegistry()

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.medicines import medicines_bp
    from .routes.carts import carts_bp
    from .routes.sales import sales_bp
    from .routes.alerts import alerts_bp
    from .routes.dashboard import dashboard_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(medicines_bp)
    app.register_blueprint(carts_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(alerts_bp)
    app.register_blueprint(dashboard_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config["CORS_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "X-Actor-Id, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
