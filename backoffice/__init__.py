"""Flask application factory."""
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from backoffice.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    from backoffice.utils.json_provider import BackofficeJSONProvider
    app.json = BackofficeJSONProvider(app)

    # Initialize Sentry for error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Redis cache for report rollups
    from backoffice.services.cache_service import init_cache
    init_cache(app)

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Document exporter (None when Google credentials are not configured)
    from backoffice.services.sheets_client import SheetsExporter
    app.extensions['document_exporter'] = SheetsExporter.from_config(app.config)

    # Load bearer-token user before each request
    from backoffice.middleware import load_user

    @app.before_request
    def before_request_handler():
        load_user()

    # Error Handlers
    from backoffice.exceptions import BackofficeError

    @app.errorhandler(BackofficeError)
    def handle_backoffice_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"BackofficeError [{error.status_code}]: {error.message}")
        else:
            app.logger.info(f"BackofficeError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description, 'error': error.name}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from backoffice.blueprints.main import main_bp
    from backoffice.blueprints.auth import auth_bp
    from backoffice.blueprints.users import users_bp
    from backoffice.blueprints.suppliers import suppliers_bp
    from backoffice.blueprints.customers import customers_bp
    from backoffice.blueprints.categories import categories_bp
    from backoffice.blueprints.purchases import purchases_bp
    from backoffice.blueprints.inventory import inventory_bp
    from backoffice.blueprints.deliveries import deliveries_bp
    from backoffice.blueprints.invoices import invoices_bp
    from backoffice.blueprints.reports import reports_bp
    from backoffice.blueprints.dashboard import dashboard_bp
    from backoffice.blueprints.product_prefixes import product_prefixes_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(suppliers_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(categories_bp)
    app.register_blueprint(purchases_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(deliveries_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(product_prefixes_bp)

    # Register CLI commands
    from backoffice.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
