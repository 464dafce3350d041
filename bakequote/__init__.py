import os
import logging
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from dotenv import load_dotenv

from .config import DevConfig, ProdConfig

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()


def create_app(config_name: str | None = None, overrides: dict | None = None) -> Flask:
    """Application factory with environment based configuration.

    ``overrides`` is applied on top of the config class before extensions
    are bound, so tests can point the app at a throwaway database.
    """
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)
    os.makedirs(app.instance_path, exist_ok=True)

    # Pick configuration
    env = config_name or os.getenv('ENV') or os.getenv('FLASK_ENV') or 'production'
    cfg_cls = DevConfig if env == 'development' else ProdConfig
    app.config.from_object(cfg_cls)
    if overrides:
        app.config.update(overrides)

    # Initialise logging
    logging.basicConfig(level=logging.DEBUG if app.debug else logging.INFO)

    db.init_app(app)
    migrate.init_app(app, db)

    # Ensure models loaded so tables can be created
    from bakequote import models  # noqa
    with app.app_context():
        db.create_all()

    from bakequote.errors import QuoteEngineError

    @app.errorhandler(QuoteEngineError)
    def quote_engine_error(err):
        db.session.rollback()
        app.logger.info('rejected %s: %s', err.code, err)
        return jsonify(error=err.code, message=str(err)), err.status_code

    @app.errorhandler(404)
    def not_found(_):
        return jsonify(error='not_found'), 404

    @app.errorhandler(500)
    def server_error(_):
        return jsonify(error='server_error'), 500

    from bakequote.catalog.routes import bp as catalog_bp
    from bakequote.pricing.routes import bp as pricing_bp
    from bakequote.quotes.routes import bp as quotes_bp
    from bakequote.payments.routes import bp as payments_bp
    from bakequote.orders.routes import bp as orders_bp
    from bakequote.integrations.notifier import notify_cli

    app.register_blueprint(catalog_bp, url_prefix='/catalog')
    app.register_blueprint(pricing_bp, url_prefix='/public')
    app.register_blueprint(quotes_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(orders_bp, url_prefix='/orders')
    app.cli.add_command(notify_cli)

    return app
