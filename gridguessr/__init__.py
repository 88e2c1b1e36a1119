import logging
import os

from flask import Flask, jsonify, request
from flask_caching import Cache
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

from config import config

logger = logging.getLogger(__name__)

db = SQLAlchemy()
login_manager = LoginManager()
cache = Cache()
migrate = Migrate()


def get_real_ip():
    """
    Get the real client IP address, accounting for reverse proxies.
    Checks X-Forwarded-For, X-Real-IP, and falls back to remote_addr.
    """
    if request.headers.get("X-Forwarded-For"):
        # Leftmost entry is the original client
        return request.headers.get("X-Forwarded-For").split(",")[0].strip()
    if request.headers.get("X-Real-IP"):
        return request.headers.get("X-Real-IP")
    return get_remote_address()


# Use Redis in production for shared rate limiting across multiple workers
limiter_storage_uri = "memory://"
redis_url = os.environ.get("REDIS_URL") or os.environ.get("CACHE_REDIS_URL")
if redis_url:
    try:
        import redis

        redis_client = redis.Redis.from_url(redis_url)
        redis_client.ping()
        limiter_storage_uri = redis_url
        print(f"Rate limiter using Redis storage at {redis_url}")
    except (ImportError, redis.exceptions.ConnectionError) as e:
        print(f"Redis not available for rate limiter, using memory storage: {e}")

limiter = Limiter(
    key_func=get_real_ip,
    default_limits=["10000 per day", "1000 per hour"],
    storage_uri=limiter_storage_uri,
)


def create_app(config_name=None):
    app = Flask(__name__)

    # Determine configuration
    if config_name is None:
        config_name = os.environ.get("FLASK_CONFIG", "default")

    app.config.from_object(config[config_name]())

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)
    cache.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # Admin API authentication is token based, no session login view
    from gridguessr.routes.admin.auth import load_user_from_request

    login_manager.request_loader(load_user_from_request)

    # Import and register blueprints
    from gridguessr.routes.api import bp as api_bp

    app.register_blueprint(api_bp, url_prefix="/api")

    from gridguessr.routes.admin import bp as admin_bp

    app.register_blueprint(admin_bp, url_prefix="/api/admin")

    # Register error handlers
    register_error_handlers(app)

    # Setup logging
    from gridguessr.utils.logging_config import setup_logging

    setup_logging(app)

    # Show configuration warnings
    if not app.config.get("TESTING", False):
        show_config_warnings(app, config_name)

    # Create database tables
    with app.app_context():
        db.create_all()

    # Initialize and start background scheduler
    if not app.config.get("TESTING", False):
        from gridguessr.services.scheduler_service import scheduler_service

        scheduler_service.init_app(app)

    return app


def show_config_warnings(app, config_name):
    """Display configuration warnings and status"""
    import warnings

    print(f"GridGuessr starting with '{config_name}' configuration")

    if config_name == "production" and app.config.get("DEBUG"):
        warnings.warn("DEBUG mode is enabled in production!", UserWarning)

    if not os.environ.get("SECRET_KEY"):
        print(
            "WARNING: Using auto-generated SECRET_KEY (sessions will reset on restart)"
        )
        print("   Run: python3 generate_secrets.py")

    db_url = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if "sqlite" in db_url:
        print("Using SQLite database (development mode)")
        if "memory" in db_url:
            print("   Database: In-memory (testing)")
        else:
            print("   Database: gridguessr.db file")
    elif "postgresql" in db_url:
        # Extract host and database name for display (hide password)
        try:
            import re

            match = re.search(r"postgresql.*?://.*?@([^:/]+):?(\d+)?/([^?]+)", db_url)
            if match:
                host, port, dbname = match.groups()
                port = port or "5432"
                print("Using PostgreSQL database")
                print(f"   Host: {host}:{port}")
                print(f"   Database: {dbname}")
            else:
                print("Using PostgreSQL database")
        except Exception:
            print("Using PostgreSQL database")
    else:
        print(
            f"Using database: {db_url.split('://')[0] if '://' in db_url else 'Unknown'}"
        )

    print("Configuration loaded successfully")


def register_error_handlers(app):
    """Register global error handlers"""
    from gridguessr.errors import (
        NotFoundError,
        TransientPersistenceError,
        ValidationError,
    )

    @app.after_request
    def after_request(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"

        if not app.config.get("DEBUG"):
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response

    @app.errorhandler(ValidationError)
    def handle_validation_error(error):
        app.logger.warning(f"Validation error: {error} - Path: {request.path}")
        return jsonify({"error": str(error), "field": error.field}), 400

    @app.errorhandler(NotFoundError)
    def handle_not_found(error):
        return jsonify({"error": str(error)}), 404

    @app.errorhandler(TransientPersistenceError)
    def handle_persistence_error(error):
        db.session.rollback()
        app.logger.error(f"Persistence error: {error} - Path: {request.path}")
        return jsonify({"error": "Storage temporarily unavailable"}), 503

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({"error": "Resource not found"}), 404

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return jsonify({"error": "Internal server error"}), 500

    @app.errorhandler(401)
    def unauthorized_error(error):
        return jsonify({"error": "Authentication required"}), 401

    @app.errorhandler(403)
    def forbidden_error(error):
        return jsonify({"error": "Access forbidden"}), 403

    @app.errorhandler(400)
    def bad_request_error(error):
        app.logger.warning(
            f"400 Bad Request: {str(error)} - Path: {request.path} - Method: {request.method}"
        )
        return jsonify({"error": "Bad request"}), 400

    @app.errorhandler(429)
    def too_many_requests_error(error):
        return jsonify({"error": "Too many requests"}), 429


from gridguessr import models  # noqa: F401, E402 - imported for model registration
