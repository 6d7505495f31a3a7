from __future__ import annotations

import logging
import os
from typing import Any, Mapping, Optional

from flask import Flask, jsonify

from .errors import ShufflerError
from .extensions import db, login_manager, migrate
from .services.delivery import create_provider
from .services.permutation import default_random_source
from .views.auth import auth_bp
from .views.exchanges import exchanges_bp
from .views.public import public_bp


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("shuffler").setLevel(level)
    app.logger.setLevel(level)


def create_app(test_config: Optional[Mapping[str, Any]] = None) -> Flask:
    app = Flask(__name__)

    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-change-me")
    app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get("DATABASE_URL", "sqlite:///shuffler.db")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    # Optional Fernet key for assignment edges; derived from SECRET_KEY when unset
    app.config["ASSIGNMENT_ENC_KEY"] = os.environ.get("ASSIGNMENT_ENC_KEY", "")

    app.config["EMAIL_PROVIDER"] = os.environ.get("EMAIL_PROVIDER", "console")
    app.config["RESEND_API_KEY"] = os.environ.get("RESEND_API_KEY", "")
    app.config["EMAIL_FROM"] = os.environ.get("EMAIL_FROM", "santa@example.com")
    app.config["EMAIL_FROM_NAME"] = os.environ.get("EMAIL_FROM_NAME", "Secret Santa")
    app.config["BASE_URL"] = os.environ.get("BASE_URL", "http://localhost:5000")
    app.config["LOG_LEVEL"] = os.environ.get("LOG_LEVEL", "INFO")

    if test_config:
        app.config.update(test_config)

    _configure_logging(app)

    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)

    app.extensions["delivery_provider"] = app.config.get("DELIVERY_PROVIDER") or create_provider(app.config)
    app.extensions["random_source"] = app.config.get("RANDOM_SOURCE") or default_random_source()

    @app.errorhandler(ShufflerError)
    def handle_shuffler_error(e: ShufflerError):
        return jsonify(e.to_dict()), e.http_status

    # Blueprints
    app.register_blueprint(public_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(exchanges_bp)

    app.logger.info(
        "Shuffler started (email provider: %s, random source: %s)",
        app.extensions["delivery_provider"].name,
        app.extensions["random_source"].name,
    )
    return app
