from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from backend.app.models import AppSettings, ConnectionType
from backend.app.settings_store import SettingsStore


class TestSettingsStore:

    def test_seeded_from_config(self, settings_store, db):
        snapshot = settings_store.snapshot()

        assert snapshot.sync_enabled is True
        assert snapshot.sync_interval == timedelta(hours=1)
        assert snapshot.crypto_sync_interval == timedelta(minutes=15)
        assert snapshot.ai_enabled is True
        assert snapshot.ai_model == "gemini-2.0-flash"
        assert db.query(AppSettings).count() == 1

    @pytest.mark.parametrize("requested,stored", [
        (1_000, 5 * 60 * 1000),
        (2 * 60 * 60 * 1000, 2 * 60 * 60 * 1000),
        (90 * 60 * 60 * 1000, 24 * 60 * 60 * 1000),
    ])
    def test_sync_interval_is_clamped(self, settings_store, requested, stored):
        snapshot = settings_store.update(sync_interval_ms=requested)

        assert snapshot.sync_interval == timedelta(milliseconds=stored)

    def test_crypto_interval_follows_shorter_default(self, settings_store):
        assert settings_store.update(sync_interval_ms=10 * 60 * 1000).crypto_sync_interval == timedelta(minutes=10)

    def test_crypto_override_is_clamped_and_removable(self, settings_store):
        snapshot = settings_store.update(crypto_sync_interval_ms=5_000)
        assert snapshot.crypto_sync_interval == timedelta(minutes=1)
        assert snapshot.interval_for(ConnectionType.CRYPTO) == timedelta(minutes=1)
        assert snapshot.interval_for(ConnectionType.BANK) == timedelta(hours=1)

        snapshot = settings_store.update(crypto_sync_interval_ms=0)
        assert snapshot.crypto_sync_interval == timedelta(minutes=15)

    def test_crypto_default_disabled_uses_base_interval(self, session_factory, config, clock):
        store = SettingsStore(session_factory, config.model_copy(update={"crypto_sync_interval_ms": 0}), clock=clock)

        assert store.snapshot().crypto_sync_interval == timedelta(hours=1)

    def test_unknown_model_falls_back_to_default(self, settings_store):
        assert settings_store.update(ai_model="gpt-4o").ai_model == "gemini-2.0-flash"
        assert settings_store.update(ai_model=" gemini-1.5-pro ").ai_model == "gemini-1.5-pro"

    def test_record_failure_only_extends(self, settings_store, clock):
        settings_store.record_ai_failure("daily quota", timedelta(hours=24))
        until = settings_store.snapshot().ai_disabled_until

        snapshot = settings_store.record_ai_failure("rate limit", timedelta(minutes=15))

        assert snapshot.ai_disabled_until == until == clock.now + timedelta(hours=24)
        assert snapshot.ai_last_error == "rate limit"

    def test_record_failure_truncates_message(self, settings_store):
        snapshot = settings_store.record_ai_failure("x" * 2000, None)

        assert len(snapshot.ai_last_error) == 500
        assert snapshot.ai_disabled_until is None

    def test_cooldown_expires(self, settings_store, clock):
        settings_store.record_ai_failure("rate limit", timedelta(minutes=15))
        assert not settings_store.is_ai_available()

        clock.advance(minutes=15)

        assert settings_store.is_ai_available()

    def test_enabling_ai_clears_cooldown(self, settings_store):
        settings_store.record_ai_failure("quota", timedelta(hours=24))
        settings_store.update(ai_enabled=False)

        snapshot = settings_store.update(ai_enabled=True)

        assert snapshot.ai_disabled_until is None
        assert snapshot.ai_last_error is None
        assert settings_store.is_ai_available()

    def test_disabled_ai_is_unavailable(self, settings_store):
        settings_store.update(ai_enabled=False)

        assert not settings_store.is_ai_available()

    def test_concurrent_failures_keep_longest_cooldown(self, settings_store, clock):
        cooldowns = [timedelta(minutes=m) for m in (15, 1440, 10, 60, 15, 10)]

        with ThreadPoolExecutor(max_workers=6) as pool:
            list(pool.map(lambda cooldown: settings_store.record_ai_failure("429", cooldown), cooldowns))

        assert settings_store.snapshot().ai_disabled_until == clock.now + timedelta(minutes=1440)
