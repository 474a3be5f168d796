# backend/printshop/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)

    # Overrides must land before the extensions read the config
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.catalog import catalog_bp
    from .routes.customers import customers_bp
    from .routes.pricing import pricing_bp
    from .routes.orders import orders_bp
    from .routes.payments import payments_bp
    from .routes.invoices import invoices_bp
    from .routes.service_jobs import service_jobs_bp
    from .routes.approvals import approvals_bp
    from .routes.quotations import quotations_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(pricing_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(service_jobs_bp)
    app.register_blueprint(approvals_bp)
    app.register_blueprint(quotations_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
