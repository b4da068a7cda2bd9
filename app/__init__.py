import logging
import os

from flask import Flask

from config import CONFIGS
from .extensions import db, login_manager, migrate


def create_app(config_name=None, test_config=None, rail=None):
    app = Flask(__name__, instance_relative_config=True)

    # ensure instance folder exists (Flask-managed)
    os.makedirs(app.instance_path, exist_ok=True)

    # Load config by environment
    env = (config_name or os.getenv("FLASK_ENV", "development")).lower()
    app.config.from_object(CONFIGS.get(env, CONFIGS["development"]))
    if test_config:
        app.config.update(test_config)
    is_prod = (env == "production")
    if is_prod:
        missing = []
        if not os.getenv("SECRET_KEY"):
            missing.append("SECRET_KEY")
        if not os.getenv("DATABASE_URL"):
            missing.append("DATABASE_URL")
        if not os.getenv("STRIPE_SECRET_KEY") or not os.getenv("STRIPE_WEBHOOK_SECRET"):
            missing.append("STRIPE_SECRET_KEY/STRIPE_WEBHOOK_SECRET")

        if missing:
            raise RuntimeError("Missing required production settings: " + ", ".join(missing))

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # If using sqlite and path is relative, force it into instance_path (Windows-safe)
    uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if uri.startswith("sqlite:///") and not uri.startswith("sqlite:////"):
        db_file = os.path.join(app.instance_path, "app.db")
        app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite:///" + db_file.replace("\\", "/")

    # Init extensions
    db.init_app(app)
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        import sqlite3
        from decimal import Decimal
        sqlite3.register_adapter(Decimal, lambda d: str(d))
    login_manager.init_app(app)
    migrate.init_app(app, db)

    from app.services.rail import init_rail
    init_rail(app, rail)

    # user loader + 401 handler
    from app import auth  # noqa: F401
    from app.errors import register_error_handlers
    register_error_handlers(app)

    # Blueprints
    from app.links import links_bp
    from app.wallet import wallet_bp
    from app.onboarding import onboarding_bp
    from app.public import public_bp
    from app.payments import payments_bp
    from app.admin import admin_bp

    app.register_blueprint(links_bp)
    app.register_blueprint(wallet_bp)
    app.register_blueprint(onboarding_bp)
    app.register_blueprint(public_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(admin_bp)

    from app.cli import register_cli
    register_cli(app)

    return app
