import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.models import Connection

logger = logging.getLogger(__name__)


class SyncProgressReporter:
    """
    Writes the human-readable stage and 0-100 progress of a running sync.

    Unchanged values are not written again. Storage errors are logged and
    never interrupt the sync.
    """

    def __init__(self, db: Session):
        self.db = db

    def update(self, connection: Optional[Connection], stage: Optional[str], progress: Optional[int]):
        if connection is None:
            return
        if progress is not None:
            progress = max(0, min(100, int(progress)))
        if connection.sync_stage == stage and connection.sync_progress == progress:
            return
        connection.sync_stage = stage
        connection.sync_progress = progress
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Could not store sync progress for connection {connection.id}: {e}")
            self.db.rollback()
