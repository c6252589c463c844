# mediavault - storage gateway and crash-safe file mover
import logging
import sys

from flask import Flask

from mediavault.config import app_config
from mediavault.database import db
from mediavault.services.storage import StorageLayout, StorageService, load_storage_settings_from_env


def configure_logging(level=None):
    """Send all log records to stdout with one handler on the root logger."""
    log_level = (level or app_config.LOG_LEVEL).upper()
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    handler.setFormatter(formatter)

    # Clear any existing handlers to avoid duplicates
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)
    root_logger.addHandler(handler)

    # Silence noisy AWS SDK debug logs
    for name in ('boto3', 'botocore', 's3transfer', 'urllib3'):
        logging.getLogger(name).setLevel(logging.WARNING)


def create_app(settings=None, database_uri=None, setup_logging=True):
    """Create the Flask app holding the intent database and storage services."""
    if setup_logging:
        configure_logging()

    app = Flask(__name__)
    app.config['SQLALCHEMY_DATABASE_URI'] = database_uri or app_config.SQLALCHEMY_DATABASE_URI
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    db.init_app(app)

    settings = settings or load_storage_settings_from_env()
    layout = StorageLayout(settings.media_location)
    app.extensions['mediavault'] = {
        'storage': StorageService(settings),
        'layout': layout,
    }

    with app.app_context():
        import mediavault.models  # noqa: F401
        db.create_all()

    app.logger.info(f"Media location: {settings.media_location} ({'remote' if layout.is_remote else 'local'})")
    return app
