"""
Runtime Settings Store

Admin-tunable knobs (sync switch, sync intervals, AI switch and model) live in a
single AppSettings row seeded from the environment configuration. Readers get an
immutable RuntimeSettings snapshot; the AI cooldown is written through
record_ai_failure, which only ever pushes the cooldown further into the future.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from backend.config import Settings
from .models import AppSettings, ConnectionType, utcnow

logger = logging.getLogger(__name__)

MIN_SYNC_INTERVAL_MS = 5 * 60 * 1000
MIN_CRYPTO_SYNC_INTERVAL_MS = 60 * 1000
MAX_SYNC_INTERVAL_MS = 24 * 60 * 60 * 1000
MAX_AI_ERROR_LENGTH = 500


def clamp(value: int, minimum: int, maximum: int) -> int:
    return max(minimum, min(maximum, value))


@dataclass(frozen=True)
class RuntimeSettings:
    """Point-in-time view of the runtime knobs, passed explicitly to each scheduler tick."""
    sync_enabled: bool
    sync_interval: timedelta
    crypto_sync_interval: timedelta
    ai_enabled: bool
    ai_model: str
    ai_disabled_until: Optional[datetime] = None
    ai_last_error: Optional[str] = None
    ai_last_error_at: Optional[datetime] = None

    def interval_for(self, connection_type: Optional[ConnectionType]) -> timedelta:
        if connection_type == ConnectionType.CRYPTO:
            return self.crypto_sync_interval
        return self.sync_interval

    def ai_available(self, now: datetime) -> bool:
        if not self.ai_enabled:
            return False
        return self.ai_disabled_until is None or now >= self.ai_disabled_until


class SettingsStore:
    """
    Persistence and synchronization for the AppSettings singleton.

    All read-modify-write cycles run under one lock so concurrent AI failures
    cannot move the cooldown backwards.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: Settings,
        clock: Callable[[], datetime] = utcnow
    ):
        self._session_factory = session_factory
        self._config = config
        self._clock = clock
        self._lock = threading.Lock()

    def _load(self, db: Session) -> AppSettings:
        row = db.query(AppSettings).order_by(AppSettings.id).first()
        if row is None:
            row = AppSettings(
                sync_enabled=self._config.sync_enabled,
                sync_interval_ms=clamp(self._config.sync_interval_ms, MIN_SYNC_INTERVAL_MS, MAX_SYNC_INTERVAL_MS),
                crypto_sync_interval_ms=None,
                ai_enabled=self._config.ai_enabled,
                ai_model=self._config.gemini_model,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
        return row

    def _resolve_model(self, model: Optional[str]) -> str:
        if model and model.strip().lower().startswith("gemini"):
            return model.strip()
        return self._config.gemini_model

    def _effective_crypto_interval_ms(self, row: AppSettings) -> int:
        base = row.sync_interval_ms
        if row.crypto_sync_interval_ms and row.crypto_sync_interval_ms > 0:
            return row.crypto_sync_interval_ms
        default = self._config.crypto_sync_interval_ms
        if default <= 0:
            return base
        return min(base, default)

    def _to_snapshot(self, row: AppSettings) -> RuntimeSettings:
        return RuntimeSettings(
            sync_enabled=bool(row.sync_enabled),
            sync_interval=timedelta(milliseconds=row.sync_interval_ms),
            crypto_sync_interval=timedelta(milliseconds=self._effective_crypto_interval_ms(row)),
            ai_enabled=bool(row.ai_enabled),
            ai_model=self._resolve_model(row.ai_model),
            ai_disabled_until=row.ai_disabled_until,
            ai_last_error=row.ai_last_error,
            ai_last_error_at=row.ai_last_error_at,
        )

    def snapshot(self) -> RuntimeSettings:
        with self._lock:
            db = self._session_factory()
            try:
                return self._to_snapshot(self._load(db))
            finally:
                db.close()

    def update(
        self,
        sync_enabled: Optional[bool] = None,
        sync_interval_ms: Optional[int] = None,
        crypto_sync_interval_ms: Optional[int] = None,
        ai_enabled: Optional[bool] = None,
        ai_model: Optional[str] = None
    ) -> RuntimeSettings:
        """
        Apply an admin update. Intervals are clamped to their allowed ranges;
        switching AI on clears any pending cooldown and the last recorded error.

        A crypto interval of 0 or less removes the override so the crypto
        interval follows the configured default again.
        """
        with self._lock:
            db = self._session_factory()
            try:
                row = self._load(db)
                if sync_enabled is not None:
                    row.sync_enabled = sync_enabled
                if sync_interval_ms is not None:
                    row.sync_interval_ms = clamp(sync_interval_ms, MIN_SYNC_INTERVAL_MS, MAX_SYNC_INTERVAL_MS)
                if crypto_sync_interval_ms is not None:
                    if crypto_sync_interval_ms <= 0:
                        row.crypto_sync_interval_ms = None
                    else:
                        row.crypto_sync_interval_ms = clamp(
                            crypto_sync_interval_ms, MIN_CRYPTO_SYNC_INTERVAL_MS, MAX_SYNC_INTERVAL_MS
                        )
                if ai_model is not None:
                    row.ai_model = self._resolve_model(ai_model)
                if ai_enabled is not None:
                    row.ai_enabled = ai_enabled
                    if ai_enabled:
                        row.ai_disabled_until = None
                        row.ai_last_error = None
                        row.ai_last_error_at = None
                db.commit()
                db.refresh(row)
                logger.info(
                    f"Settings updated: sync_enabled={row.sync_enabled}, "
                    f"sync_interval_ms={row.sync_interval_ms}, ai_enabled={row.ai_enabled}"
                )
                return self._to_snapshot(row)
            finally:
                db.close()

    def is_ai_available(self) -> bool:
        return self.snapshot().ai_available(self._clock())

    def ai_model(self) -> str:
        return self.snapshot().ai_model

    def record_ai_failure(self, message: Optional[str], cooldown: Optional[timedelta]) -> RuntimeSettings:
        """
        Store the last AI error and, when a cooldown is given, extend the
        cooldown to now + cooldown unless an existing one already reaches further.
        """
        now = self._clock()
        with self._lock:
            db = self._session_factory()
            try:
                row = self._load(db)
                if cooldown is not None:
                    candidate = now + cooldown
                    if row.ai_disabled_until is None or candidate > row.ai_disabled_until:
                        row.ai_disabled_until = candidate
                row.ai_last_error = (message or "")[:MAX_AI_ERROR_LENGTH] or None
                row.ai_last_error_at = now
                db.commit()
                db.refresh(row)
                if cooldown is not None:
                    logger.warning(f"AI categorization paused until {row.ai_disabled_until}: {row.ai_last_error}")
                return self._to_snapshot(row)
            finally:
                db.close()
