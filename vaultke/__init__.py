"""
Flask Application Factory
Initializes and configures the VaultKe API
"""

import logging
from flask import Flask, g
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from config import config, DEFAULT_JWT_SECRET
from vaultke.auth import login_manager, bearer_principal
from vaultke.errors import APIError
from vaultke.store import Store, StoreClosedError
from vaultke.utils.responses import success_response, error_response

__version__ = '1.0.0'

logger = logging.getLogger(__name__)

API_PREFIX = '/api/v1'
AREAS = ('auth', 'users', 'admin', 'chamas', 'wallets', 'reminders',
         'marketplace', 'notifications')


def get_blueprints():
    """Blueprint per API area, keyed by the area's URL segment"""
    from vaultke.routes.auth import bp as auth_bp
    from vaultke.routes.users import bp as users_bp
    from vaultke.routes.admin import bp as admin_bp
    from vaultke.routes.chamas import bp as chamas_bp
    from vaultke.routes.wallets import bp as wallets_bp
    from vaultke.routes.reminders import bp as reminders_bp
    from vaultke.routes.marketplace import bp as marketplace_bp
    from vaultke.routes.notifications import bp as notifications_bp

    return {
        'auth': auth_bp,
        'users': users_bp,
        'admin': admin_bp,
        'chamas': chamas_bp,
        'wallets': wallets_bp,
        'reminders': reminders_bp,
        'marketplace': marketplace_bp,
        'notifications': notifications_bp,
    }


def create_app(config_name='default', store=None, principal=None, areas=None):
    """
    Application factory pattern
    Creates and configures Flask application

    Args:
        config_name: Key into config.config
        store: Open Store to serve from; one is opened from DATABASE_URL if omitted
        principal: Zero-argument callable returning the caller id for the
            current request; defaults to bearer-token authentication
        areas: Iterable of API areas to mount; all of AREAS if omitted
    """
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(config[config_name])

    # Validate secrets in production
    if config_name == 'production':
        secret = app.config.get('JWT_SECRET')
        if not secret or secret == DEFAULT_JWT_SECRET:
            raise ValueError("Production requires a secure JWT_SECRET. Set it via environment variable.")
        if len(secret) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters for production.")

    if store is None:
        store = Store(app.config['DATABASE_URL']).open()
    app.extensions['vaultke_store'] = store

    if principal is None:
        principal = bearer_principal
    app.extensions['vaultke_principal'] = principal

    login_manager.init_app(app)

    # Register blueprints
    blueprints = get_blueprints()
    for area in (areas or AREAS):
        if area not in blueprints:
            raise ValueError(f"Unknown API area: {area}")
        app.register_blueprint(blueprints[area], url_prefix=f'{API_PREFIX}/{area}')

    @app.route('/health')
    def health():
        """Liveness probe"""
        return success_response({'status': 'ok', 'version': __version__})

    # Request hooks
    @app.before_request
    def attach_request_context():
        """Expose the store and the resolved caller to handlers"""
        g.db = app.extensions['vaultke_store']
        g.user_id = app.extensions['vaultke_principal']()

    # Error handlers
    @app.errorhandler(APIError)
    def handle_api_error(error):
        return error_response(error.message, error.status_code)

    @app.errorhandler(StoreClosedError)
    def handle_store_closed(error):
        logger.error(f"Request failed, store unavailable: {error}")
        return error_response(str(error), 500)

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(error):
        logger.exception("Database error while handling request")
        return error_response('database operation failed', 500)

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return error_response(error.name, error.code)

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        logger.exception("Unhandled error while handling request")
        return error_response('Internal server error', 500)

    return app
