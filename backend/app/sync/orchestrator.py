"""
Sync Orchestrator

Owns the sync lifecycle of a connection:
- prepare_sync decides whether a run may start (disabled, already running,
  rate-limit backoff) and claims the connection
- request_sync persists the claim and hands the run to the worker pool
- run_sync executes the adapter in a worker and writes the terminal state

Only this module moves a connection between sync states. The in-process claim
set assumes a single application instance.
"""

import asyncio
import logging
import threading
from datetime import datetime
from typing import Callable, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.models import Connection, ConnectionStatus, SyncStatus, utcnow
from backend.app.categorization import CategorizationCascade
from .dispatcher import SyncDispatcher
from .encryption import ConfigEncryption
from .failures import FailureKind, classify_failure, rate_limit_hint, retry_after, RATE_LIMIT_BACKOFF
from .importer import TransactionImporter
from .progress import SyncProgressReporter
from .providers import ProviderRegistry, ProviderContext, SyncResult

logger = logging.getLogger(__name__)

STAGE_PREPARING = "Voorbereiden"
STAGE_DONE = "Klaar"
STAGE_FAILED = "Mislukt"
STAGE_RATE_LIMITED = "Rate limit actief"
INTERRUPTED_MESSAGE = "Synchronisatie onderbroken door herstart"


class SyncOrchestrator:
    """
    Connection sync state machine plus the worker pool that runs adapters.

    Args:
        session_factory: Creates the session each run works in
        registry: Adapter classes by provider id
        encryption: Decrypts connection configs
        cascade: Categorization cascade used by the importer
        notifier: NotificationSink with send(email, subject, body)
        clock: Returns naive UTC now
        run_timeout_seconds: Upper bound for one adapter run
        workers: Number of concurrent runs
        queue_size: Pending runs accepted before submissions are rejected
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        registry: ProviderRegistry,
        encryption: ConfigEncryption,
        cascade: CategorizationCascade,
        notifier,
        clock: Callable[[], datetime] = utcnow,
        run_timeout_seconds: float = 600.0,
        workers: int = 4,
        queue_size: int = 100
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.encryption = encryption
        self.cascade = cascade
        self.notifier = notifier
        self.clock = clock
        self.run_timeout_seconds = run_timeout_seconds
        self.dispatcher = SyncDispatcher(self.run_sync, workers=workers, queue_size=queue_size)
        self._claims: Set[int] = set()
        self._claims_lock = threading.Lock()

    def is_claimed(self, connection_id: int) -> bool:
        with self._claims_lock:
            return connection_id in self._claims

    def release(self, connection_id: int):
        with self._claims_lock:
            self._claims.discard(connection_id)

    def prepare_sync(self, connection: Connection, now: Optional[datetime] = None) -> bool:
        """
        Decide whether a sync may start and mark the connection accordingly.

        Returns False without changes for disabled or already running
        connections. A connection whose last error was a rate limit is marked
        SKIPPED until 24h after its last completed (or successful) sync; the
        skip itself does not move that anchor. Otherwise the connection is
        claimed and marked RUNNING.

        A True result must be followed by run_sync or release.
        """
        now = now or self.clock()
        if connection.status == ConnectionStatus.DISABLED:
            return False

        with self._claims_lock:
            if connection.sync_status == SyncStatus.RUNNING or connection.id in self._claims:
                return False

            if classify_failure(connection.error_message, connection.provider_id) == FailureKind.RATE_LIMIT:
                retry_at = retry_after(connection) or now + RATE_LIMIT_BACKOFF
                if now < retry_at:
                    connection.sync_status = SyncStatus.SKIPPED
                    connection.sync_stage = STAGE_RATE_LIMITED
                    connection.sync_progress = 0
                    connection.last_sync_error = rate_limit_hint(retry_at)
                    logger.info(f"Connection {connection.id} rate limited, next attempt after {retry_at}")
                    return False

            self._claims.add(connection.id)

        connection.sync_status = SyncStatus.RUNNING
        connection.last_sync_started_at = now
        connection.last_sync_error = None
        connection.sync_stage = STAGE_PREPARING
        connection.sync_progress = 5
        return True

    def request_sync(self, db: Session, connection: Connection, now: Optional[datetime] = None) -> bool:
        """
        Prepare a sync, persist the decision and queue the run.

        Returns:
            True when a run was queued
        """
        prepared = self.prepare_sync(connection, now)
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            if prepared:
                self.release(connection.id)
            raise
        if not prepared:
            return False

        if self.dispatcher.submit(connection.id):
            logger.info(f"Queued sync for connection {connection.id} ({connection.provider_id})")
            return True

        connection.sync_status = SyncStatus.IDLE
        connection.sync_stage = None
        connection.sync_progress = None
        try:
            db.commit()
        finally:
            self.release(connection.id)
        return False

    async def run_sync(self, connection_id: int):
        """Execute one claimed sync in its own session and write the terminal state."""
        db = self.session_factory()
        try:
            connection = db.get(Connection, connection_id)
            if connection is None:
                logger.warning(f"Connection {connection_id} disappeared before its sync started")
                return
            previous_status = connection.status
            try:
                result = await self._run_adapter(db, connection)
                self._finish_success(db, connection, result)
            except Exception as e:
                await self._finish_failure(db, connection, previous_status, e)
        finally:
            self.release(connection_id)
            db.close()

    async def _run_adapter(self, db: Session, connection: Connection) -> SyncResult:
        config = self.encryption.decrypt_config(connection.encrypted_config)
        context = ProviderContext(
            db=db,
            importer=TransactionImporter(db, self.cascade),
            progress=SyncProgressReporter(db),
        )
        adapter = self.registry.create(connection.provider_id, context)
        logger.info(f"Starting sync for connection {connection.id} ({connection.provider_id})")
        try:
            return await asyncio.wait_for(adapter.sync(connection, config), timeout=self.run_timeout_seconds)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Synchronisatie duurde langer dan {int(self.run_timeout_seconds)} seconden")

    def _finish_success(self, db: Session, connection: Connection, result: SyncResult):
        now = self.clock()
        connection.status = ConnectionStatus.ACTIVE
        connection.error_message = None
        connection.last_synced_at = now
        connection.sync_status = SyncStatus.SUCCESS
        connection.last_sync_completed_at = now
        connection.last_sync_error = None
        connection.sync_stage = STAGE_DONE
        connection.sync_progress = 100
        db.commit()
        logger.info(
            f"Sync finished for connection {connection.id}: "
            f"{result.accounts_updated} accounts, {result.transactions_imported} transactions"
        )

    async def _finish_failure(
        self,
        db: Session,
        connection: Connection,
        previous_status: ConnectionStatus,
        error: Exception
    ):
        if isinstance(error, SQLAlchemyError):
            db.rollback()

        message = str(error) or error.__class__.__name__
        kind = classify_failure(error, connection.provider_id)
        now = self.clock()

        connection.status = ConnectionStatus.ERROR
        connection.sync_status = SyncStatus.FAILED
        connection.last_sync_completed_at = now
        connection.last_sync_error = message
        connection.sync_stage = STAGE_FAILED
        connection.sync_progress = 100
        if kind == FailureKind.RATE_LIMIT:
            connection.error_message = rate_limit_hint(retry_after(connection) or now + RATE_LIMIT_BACKOFF)
        else:
            connection.error_message = message
        db.commit()
        logger.warning(f"Sync failed for connection {connection.id} ({kind.value}): {message}")

        if previous_status != ConnectionStatus.ERROR:
            await self._notify(connection, message)

    async def _notify(self, connection: Connection, message: str):
        user = connection.user
        if user is None or not user.email:
            return
        subject = f"Sync probleem bij {connection.display_name}"
        body = (
            f"Er ging iets mis bij het synchroniseren van {connection.display_name}.\n\n"
            f"Foutmelding: {message}\n\n"
            "Controleer je koppeling in Fintrack."
        )
        try:
            await asyncio.to_thread(self.notifier.send, user.email, subject, body)
        except Exception as e:
            logger.warning(f"Could not send sync failure notification for connection {connection.id}: {e}")

    def reset_interrupted_runs(self, db: Session) -> int:
        """Mark runs left RUNNING by a previous process as failed."""
        stale = [
            connection
            for connection in db.query(Connection).filter(Connection.sync_status == SyncStatus.RUNNING).all()
            if not self.is_claimed(connection.id)
        ]
        now = self.clock()
        for connection in stale:
            connection.sync_status = SyncStatus.FAILED
            connection.sync_stage = STAGE_FAILED
            connection.sync_progress = 100
            connection.last_sync_completed_at = now
            connection.last_sync_error = INTERRUPTED_MESSAGE
        db.commit()
        if stale:
            logger.warning(f"Reset {len(stale)} interrupted sync runs")
        return len(stale)
