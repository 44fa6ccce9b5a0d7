"""
Process-wide services shared by the API, the scheduler and the sync workers.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import httpx
from fastapi import Request
from sqlalchemy.orm import Session

from backend.config import Settings
from backend.email import build_notification_sink
from .ai_service import AiClassifier
from .categorization import CategorizationCascade
from .models import utcnow
from .settings_store import SettingsStore
from .sync import ConfigEncryption, SyncOrchestrator, SyncScheduler
from .sync.providers import ProviderRegistry


@dataclass
class Runtime:
    config: Settings
    settings_store: SettingsStore
    ai_classifier: AiClassifier
    cascade: CategorizationCascade
    orchestrator: SyncOrchestrator
    scheduler: SyncScheduler

    async def start(self):
        db = self.orchestrator.session_factory()
        try:
            self.orchestrator.reset_interrupted_runs(db)
        finally:
            db.close()
        await self.orchestrator.dispatcher.start()
        self.scheduler.start()

    async def stop(self):
        self.scheduler.shutdown()
        await self.orchestrator.dispatcher.stop()


def build_runtime(
    config: Settings,
    session_factory: Callable[[], Session],
    registry: Optional[ProviderRegistry] = None,
    notifier=None,
    ai_transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Callable[[], datetime] = utcnow
) -> Runtime:
    settings_store = SettingsStore(session_factory, config, clock=clock)
    ai_classifier = AiClassifier(settings_store, config, transport=ai_transport)
    cascade = CategorizationCascade(ai_classifier=ai_classifier)
    orchestrator = SyncOrchestrator(
        session_factory,
        registry or ProviderRegistry(),
        ConfigEncryption(config.secret_key),
        cascade,
        notifier or build_notification_sink(config),
        clock=clock,
        run_timeout_seconds=config.sync_run_timeout_seconds,
        workers=config.sync_workers,
        queue_size=config.sync_queue_size,
    )
    scheduler = SyncScheduler(
        session_factory,
        orchestrator,
        settings_store,
        poll_interval_seconds=config.sync_poll_interval_seconds,
        clock=clock,
    )
    return Runtime(config, settings_store, ai_classifier, cascade, orchestrator, scheduler)


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime
