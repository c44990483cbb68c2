# vitrine/__init__.py
from __future__ import annotations

import logging

from flask import Flask, jsonify
from flask_wtf.csrf import CSRFError, generate_csrf
from werkzeug.exceptions import HTTPException

from .extensions import init_extensions, db
from .core.errors import CouponRejected, InfrastructureError, NotFound, ServiceError

logger = logging.getLogger(__name__)


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(level=level, format="[%(levelname)s] %(name)s: %(message)s")
    logging.getLogger("vitrine").setLevel(level)


def _register_error_handlers(app: Flask) -> None:
    from .views.common import InvalidForm

    @app.errorhandler(InvalidForm)
    def invalid_form(e):
        return jsonify(errors=e.errors), 400

    @app.errorhandler(CouponRejected)
    def coupon_rejected(e):
        return jsonify(error=str(e), **e.rejection.to_dict()), 422

    @app.errorhandler(NotFound)
    def service_not_found(e):
        return jsonify(error=str(e)), 404

    @app.errorhandler(InfrastructureError)
    def infrastructure_error(e):
        return jsonify(error=str(e), retryable=True), 503

    @app.errorhandler(ServiceError)
    def service_error(e):
        return jsonify(error=str(e), retryable=False), 400

    @app.errorhandler(CSRFError)
    def csrf_error(e):
        return jsonify(error=e.description), 400

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify(error=e.description), e.code

    @app.errorhandler(500)
    def server_error(e):
        logger.exception("Erro inesperado")
        return jsonify(error="Erro interno"), 500


def create_app(config_object: str = "config.Config"):
    app = Flask(__name__)

    # Config básica
    app.config.from_object(config_object)
    app.config.setdefault("WTF_CSRF_TIME_LIMIT", None)
    app.json.ensure_ascii = False

    _configure_logging(app)
    init_extensions(app)

    # Blueprints
    from .views.stores import bp as stores_bp
    from .views.coupons import bp as coupons_bp
    from .views.inventory import bp as inventory_bp
    from .views.checkout import bp as checkout_bp

    app.register_blueprint(stores_bp, url_prefix="/stores")
    app.register_blueprint(coupons_bp, url_prefix="/stores/<slug>/coupons")
    app.register_blueprint(inventory_bp, url_prefix="/stores/<slug>/inventory")
    app.register_blueprint(checkout_bp)

    # Healthcheck simples
    @app.get("/health")
    def health():
        return jsonify(ok=True)

    @app.get("/csrf-token")
    def csrf_token():
        return jsonify(csrf_token=generate_csrf())

    _register_error_handlers(app)

    with app.app_context():
        from .core import models  # noqa: F401
        db.create_all()

    return app
