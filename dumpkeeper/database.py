"""
Startup connectivity probe for SQL databases.

The dump tools do the real work; this only makes sure the configured server
accepts the credentials before the loop starts.
"""

import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError

from dumpkeeper.config import SetupError


logger = logging.getLogger(__name__)

DRIVERS = {
    'mysql': 'mysql+pymysql',
    'mariadb': 'mysql+pymysql',
    'postgresql': 'postgresql+psycopg2',
}

CONNECT_TIMEOUT = 10


def build_url(config) -> URL:
    """SQLAlchemy URL for the configured SQL connection."""
    return URL.create(
        DRIVERS[config.connection],
        username=config.db_user,
        password=config.db_password,
        host=config.db_host,
        port=int(config.db_port),
        database=config.db_name
    )


def check_connection(config):
    """
    Connect to the configured database and run a trivial query.

    Redis is not probed.

    Raises:
        SetupError: If the database cannot be reached
    """
    if config.connection not in DRIVERS:
        return

    try:
        url = build_url(config)
    except ValueError as e:
        raise SetupError(f"Invalid database settings: {e}")

    try:
        engine = create_engine(url, connect_args={'connect_timeout': CONNECT_TIMEOUT})
    except ImportError as e:
        raise SetupError(f"Database driver not installed: {e}")

    try:
        with engine.connect() as connection:
            connection.execute(text('SELECT 1'))
    except SQLAlchemyError as e:
        raise SetupError(f"Failed to connect to database: {e}")
    finally:
        engine.dispose()

    logger.info(f"Connected to {config.connection} database {config.db_name} at {config.db_host}:{config.db_port}")
