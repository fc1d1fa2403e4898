"""
Application Entry Point
Validates settings, configures logging and runs the VaultKe API
"""

import os
import logging

from werkzeug.security import generate_password_hash

from config import Settings
from vaultke import create_app
from vaultke.models import User, Wallet
from vaultke.utils.helpers import generate_id

# Settings.environment uses 'test'; the Flask config map also knows 'testing'
settings = Settings.load()
settings.validate()

handlers = [logging.StreamHandler()]
if settings.log_file:
    log_dir = os.path.dirname(settings.log_file)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir)
    handlers.append(logging.FileHandler(settings.log_file))

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=handlers
)

logger = logging.getLogger(__name__)

app = create_app(settings.environment)


@app.cli.command('init-db')
def init_db():
    """Create tables and the default admin account"""
    store = app.extensions['vaultke_store']
    logger.info("Initializing database...")

    with store.session_scope() as session:
        admin = session.query(User).filter_by(email='admin@vaultke.com').first()
        if not admin:
            admin = User(
                id=generate_id(),
                email='admin@vaultke.com',
                phone='+254700000000',
                first_name='Admin',
                last_name='VaultKe',
                password_hash=generate_password_hash('admin12345'),
                role='admin',
                status='active',
                is_email_verified=True
            )
            session.add(admin)
            session.add(Wallet(id=generate_id(), owner_id=admin.id, type='personal'))
            logger.info("Default admin user created (email: admin@vaultke.com)")

    logger.info("Database initialized successfully!")


@app.cli.command('seed-demo')
def seed_demo():
    """Load the integration fixtures into the configured database"""
    from vaultke.testing.fixtures import insert_test_data, cleanup_test_data

    store = app.extensions['vaultke_store']
    removed = cleanup_test_data(store)
    insert_test_data(store)
    logger.info(f"Demo data loaded ({removed} stale rows replaced)")


@app.cli.command('show-settings')
def show_settings():
    """Print the effective settings with secrets masked"""
    print(settings)


if __name__ == '__main__':
    is_dev = settings.environment == 'development'
    logger.info(f"Starting VaultKe API on port {settings.server_port}...")
    logger.info(f"Environment: {settings.environment}, Debug mode: {is_dev}")

    app.run(
        host='0.0.0.0',
        port=int(settings.server_port),
        debug=is_dev
    )
