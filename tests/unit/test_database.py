"""
Unit tests for the startup database probe (dumpkeeper/database.py).
"""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from dumpkeeper.config import SetupError
from dumpkeeper.database import build_url, check_connection


class TestBuildUrl:
    """Test SQLAlchemy URL construction."""

    def test_mariadb_url(self, make_config):
        url = build_url(make_config(db_host='db.internal', db_port='3307'))

        assert url.drivername == 'mysql+pymysql'
        assert url.host == 'db.internal'
        assert url.port == 3307
        assert url.username == 'backup'
        assert url.password == 's3cret'
        assert url.database == 'shop'

    def test_postgresql_url(self, make_config):
        url = build_url(make_config(connection='postgresql', db_port='5432'))

        assert url.drivername == 'postgresql+psycopg2'
        assert url.port == 5432

    def test_password_is_not_rendered(self, make_config):
        url = build_url(make_config(db_password='p@ss:word/with?chars'))

        assert 'p@ss:word/with?chars' not in str(url)


class TestCheckConnection:
    """Test connectivity probing."""

    @patch('dumpkeeper.database.create_engine')
    def test_successful_probe(self, mock_create_engine, make_config):
        engine = MagicMock()
        mock_create_engine.return_value = engine

        check_connection(make_config())

        connection = engine.connect.return_value.__enter__.return_value
        connection.execute.assert_called_once()
        assert str(connection.execute.call_args.args[0]) == 'SELECT 1'
        engine.dispose.assert_called_once()

    @patch('dumpkeeper.database.create_engine')
    def test_failed_probe_is_setup_error(self, mock_create_engine, make_config):
        engine = MagicMock()
        engine.connect.side_effect = OperationalError('SELECT 1', {}, Exception('Connection refused'))
        mock_create_engine.return_value = engine

        with pytest.raises(SetupError, match='Failed to connect to database'):
            check_connection(make_config())

        engine.dispose.assert_called_once()

    @patch('dumpkeeper.database.create_engine')
    def test_redis_is_not_probed(self, mock_create_engine, make_config):
        check_connection(make_config(connection='redis'))

        mock_create_engine.assert_not_called()

    @patch('dumpkeeper.database.create_engine', side_effect=ImportError('No module named pymysql'))
    def test_missing_driver(self, mock_create_engine, make_config):
        with pytest.raises(SetupError, match='driver not installed'):
            check_connection(make_config())

    def test_invalid_port(self, make_config):
        with pytest.raises(SetupError, match='Invalid database settings'):
            check_connection(make_config(db_port='not-a-port'))
