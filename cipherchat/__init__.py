from __future__ import annotations

import logging
import os

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import JWTManager

from .config import Config
from .database import db
from .encryption.exceptions import CryptoProviderError, EnvelopeFormatError, KeyMissingError
from .utils.key_issuer import KeyIssuer

jwt = JWTManager()
logger = logging.getLogger(__name__)

DEV_ORIGINS = ("http://localhost:5173", "http://127.0.0.1:5173")


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("cipherchat").setLevel(level)
    app.logger.setLevel(level)


def _configure_cors(app: Flask) -> None:
    origins = sorted({app.config.get("FRONTEND_ORIGIN"), *DEV_ORIGINS} - {None, ""})
    CORS(
        app,
        resources={r"/api/*": {"origins": origins, "methods": ["GET", "POST", "OPTIONS"]}},
        allow_headers=["Content-Type", "Authorization"],
        supports_credentials=True,
    )


def _register_error_handlers(app: Flask) -> None:
    """Protocol errors that escape a route become JSON responses."""

    @app.errorhandler(EnvelopeFormatError)
    def envelope_format_error(exc):
        return jsonify({"message": str(exc)}), 400

    @app.errorhandler(KeyMissingError)
    def key_missing_error(exc):
        return jsonify({"message": str(exc)}), 404

    @app.errorhandler(CryptoProviderError)
    def crypto_provider_error(exc):
        db.session.rollback()
        logger.error("Crypto backend failure on %s: %s", request.path, exc)
        return jsonify({"message": "Encryption backend unavailable."}), 500


def create_app(config_class: type[Config] | None = None) -> Flask:
    """Application factory used by both run.py and tests."""
    app = Flask(__name__, instance_relative_config=True)
    os.makedirs(app.instance_path, exist_ok=True)

    app.config.from_object(config_class or Config)
    _configure_logging(app)
    _configure_cors(app)

    db.init_app(app)
    jwt.init_app(app)

    # One pool per app; RSA generation never runs on request threads.
    app.extensions["key_issuer"] = KeyIssuer(
        key_size=app.config["RSA_KEY_SIZE"],
        max_workers=app.config["KEY_POOL_WORKERS"],
        timeout=app.config["KEY_ISSUE_TIMEOUT_SECONDS"],
    )

    from .routes import register_blueprints

    register_blueprints(app)
    _register_error_handlers(app)

    @app.after_request
    def no_store_key_responses(response):
        """Auth responses carry the private key; browsers and proxies must not keep them."""
        if request.path.startswith("/api/auth/"):
            response.headers["Cache-Control"] = "no-store"
        return response

    @app.get("/api/ping")
    def ping():
        return jsonify({"status": "ok"}), 200

    with app.app_context():
        db.create_all()

    return app


__all__ = ["create_app", "db", "jwt"]
