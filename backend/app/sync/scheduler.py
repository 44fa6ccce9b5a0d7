"""Periodic sync scheduling for auto-synced connections"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from sqlalchemy.orm import Session

from backend.app.models import Connection, ConnectionStatus, SyncStatus, utcnow
from backend.app.settings_store import RuntimeSettings, SettingsStore
from .orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

JOB_ID = "sync_connections"


class SyncScheduler:
    """
    Polls on a short fixed interval and queues every connection whose own sync
    interval has elapsed. The poll interval is independent of the sync
    intervals, which are read from a fresh settings snapshot on every tick.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        orchestrator: SyncOrchestrator,
        settings_store: SettingsStore,
        poll_interval_seconds: int = 60,
        clock: Callable[[], datetime] = utcnow
    ):
        self.session_factory = session_factory
        self.orchestrator = orchestrator
        self.settings_store = settings_store
        self.poll_interval_seconds = poll_interval_seconds
        self.clock = clock
        self.scheduler: Optional[AsyncIOScheduler] = None

    def start(self):
        self.scheduler = AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': AsyncIOExecutor()},
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': self.poll_interval_seconds
            },
            timezone='UTC'
        )
        self.scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.poll_interval_seconds),
            id=JOB_ID,
            name="Sync Due Connections",
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Sync scheduler started, polling every {self.poll_interval_seconds}s")

    def shutdown(self):
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Sync scheduler stopped")
        self.scheduler = None

    @staticmethod
    def is_due(connection: Connection, settings: RuntimeSettings, now: datetime) -> bool:
        if connection.sync_status == SyncStatus.RUNNING:
            return False
        interval = settings.interval_for(connection.connection_type)
        if interval.total_seconds() <= 0:
            return True
        last_completion = connection.last_sync_completed_at or connection.last_synced_at
        if last_completion is None:
            return True
        return now - last_completion >= interval

    async def tick(self, now: Optional[datetime] = None) -> List[int]:
        """
        Queue every due connection.

        Returns:
            Ids of the connections whose run was queued
        """
        settings = self.settings_store.snapshot()
        if not settings.sync_enabled:
            return []
        now = now or self.clock()

        queued = []
        db = self.session_factory()
        try:
            connections = db.query(Connection).filter(
                Connection.auto_sync_enabled == True,
                Connection.status == ConnectionStatus.ACTIVE
            ).order_by(Connection.id).all()

            for connection in connections:
                try:
                    if not self.is_due(connection, settings, now):
                        continue
                    if self.orchestrator.request_sync(db, connection, now):
                        queued.append(connection.id)
                except Exception:
                    logger.exception(f"Scheduling sync for connection {connection.id} failed")
                    db.rollback()
        finally:
            db.close()

        if queued:
            logger.info(f"Scheduler queued {len(queued)} connection syncs")
        return queued
