import os
import logging
from flask import Flask, jsonify
from dotenv import load_dotenv

from .config import DevConfig, ProdConfig
from .errors import ApiError, ExportError, ValidationError


def create_app(config_name: str | None = None) -> Flask:
    """Application factory with environment based configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    # Pick configuration
    env = config_name or os.getenv('ENV') or os.getenv('FLASK_ENV') or 'production'
    cfg_cls = DevConfig if env == 'development' else ProdConfig
    app.config.from_object(cfg_cls)

    # Initialise logging
    logging.basicConfig(level=logging.DEBUG if app.debug else logging.INFO)

    @app.route('/')
    def index():
        return jsonify(status='ok', service='gestioo')

    @app.errorhandler(ValidationError)
    def validation_error(err):
        return jsonify(error=str(err), details=err.messages), 400

    @app.errorhandler(ApiError)
    def api_error(err):
        # upstream 5xx is a gateway failure from our point of view
        status = err.status if err.status and err.status < 500 else 502
        return jsonify(error=err.message), status

    @app.errorhandler(ExportError)
    def export_error(err):
        return jsonify(error=err.message), 500

    @app.errorhandler(404)
    def not_found(_):
        return jsonify(error='Recurso no encontrado'), 404

    @app.errorhandler(500)
    def server_error(_):
        return jsonify(error='Ocurrió un error interno. Por favor inténtelo de nuevo.'), 500

    from gestioo.quotations.routes import bp as quotations_bp
    from gestioo.visits.routes import bp as visits_bp
    from gestioo.cli import gestioo_cli

    app.register_blueprint(quotations_bp, url_prefix='/quotations')
    app.register_blueprint(visits_bp, url_prefix='/visits')
    app.cli.add_command(gestioo_cli)

    return app
