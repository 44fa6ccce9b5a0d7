from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from backend.app.sync.progress import SyncProgressReporter


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    return MagicMock()


@pytest.fixture
def connection():
    return SimpleNamespace(id=7, sync_stage=None, sync_progress=None)


class TestSyncProgressReporter:

    def test_update_writes_stage_and_progress(self, mock_db, connection):
        SyncProgressReporter(mock_db).update(connection, "Transacties importeren", 40)

        assert connection.sync_stage == "Transacties importeren"
        assert connection.sync_progress == 40
        mock_db.commit.assert_called_once()

    def test_unchanged_values_are_not_written_again(self, mock_db, connection):
        reporter = SyncProgressReporter(mock_db)

        reporter.update(connection, "Afwerken", 95)
        reporter.update(connection, "Afwerken", 95)

        assert mock_db.commit.call_count == 1

    @pytest.mark.parametrize("progress,stored", [(-5, 0), (140, 100), (55.7, 55)])
    def test_progress_is_clamped(self, mock_db, connection, progress, stored):
        SyncProgressReporter(mock_db).update(connection, "Bezig", progress)

        assert connection.sync_progress == stored

    def test_storage_error_does_not_raise(self, mock_db, connection):
        mock_db.commit.side_effect = OperationalError("UPDATE connections", {}, Exception("database is locked"))

        SyncProgressReporter(mock_db).update(connection, "Bezig", 50)

        mock_db.rollback.assert_called_once()

    def test_missing_connection_is_ignored(self, mock_db):
        SyncProgressReporter(mock_db).update(None, "Bezig", 50)

        mock_db.commit.assert_not_called()
