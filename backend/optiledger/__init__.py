# backend/optiledger/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        # Must be applied before extensions bind
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.boleto_gateway import init_boleto_gateway
    init_boleto_gateway(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.registers import registers_bp
    from .routes.payments import payments_bp
    from .routes.debts import debts_bp
    from .routes.boletos import boletos_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(registers_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(debts_bp)
    app.register_blueprint(boletos_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "X-User-Id, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
