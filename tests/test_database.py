from unittest.mock import patch

from plurr.core.database import create_db_and_tables, get_db


class TestDatabase:
    """Test database functionality"""

    async def test_create_db_and_tables_success(self):
        """Table creation runs against the temporary sqlite database without raising."""
        await create_db_and_tables()

    async def test_create_db_and_tables_missing_database(self):
        error = Exception('database "plurr" does not exist')
        with patch('plurr.core.database.engine.begin', side_effect=error):
            with patch('sys.exit') as mock_exit:
                await create_db_and_tables()
                mock_exit.assert_called_once_with(1)

    async def test_create_db_and_tables_name_resolution_error(self):
        error = Exception("Name or service not known")
        with patch('plurr.core.database.engine.begin', side_effect=error):
            with patch('sys.exit') as mock_exit:
                await create_db_and_tables()
                mock_exit.assert_called_once_with(1)

    async def test_create_db_and_tables_connection_refused(self):
        error = OSError("Connection refused")
        with patch('plurr.core.database.engine.begin', side_effect=error):
            with patch('sys.exit') as mock_exit:
                await create_db_and_tables()
                mock_exit.assert_called_once_with(1)

    async def test_get_db_yields_session(self):
        generator = get_db()
        session = await generator.__anext__()
        assert session is not None
        await generator.aclose()
