"""
Pytest configuration and shared fixtures.
"""

import os

os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["DATABASE_URL"] = "sqlite://"

from datetime import datetime, timedelta
from decimal import Decimal
from itertools import count

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from backend.config import Settings
from backend.database import Base
from backend.app.models import (
    AccountTransaction,
    Connection,
    ConnectionStatus,
    ConnectionType,
    FinancialAccount,
    SyncStatus,
    TransactionDirection,
    User,
)
from backend.app.settings_store import SettingsStore
from backend.app.sync.encryption import ConfigEncryption


class FakeClock:
    """Settable naive-UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite engine; every session gets its own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    """Session used by the test body for setup and assertions."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def config():
    return Settings(
        _env_file=None,
        secret_key="test-secret-key",
        database_url="sqlite://",
        gemini_api_key="test-key",
        ai_enabled=True,
        ai_min_request_spacing_seconds=0,
        sync_run_timeout_seconds=5,
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 6, 1, 12, 0, 0))


@pytest.fixture
def settings_store(session_factory, config, clock):
    return SettingsStore(session_factory, config, clock=clock)


@pytest.fixture
def encryption(config):
    return ConfigEncryption(config.secret_key)


@pytest.fixture
def user(db):
    """Create a test user."""
    user = User(email="test@example.com", full_name="Test User", is_active=True, is_admin=False)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def other_user(db):
    user = User(email="other@example.com", full_name="Other User", is_active=True, is_admin=False)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def connection_factory(db, encryption):
    """Create connections with sensible defaults; provider config is encrypted like in production."""

    def _create(
        user,
        provider_id="manual",
        connection_type=ConnectionType.BANK,
        status=ConnectionStatus.ACTIVE,
        sync_status=SyncStatus.IDLE,
        config=None,
        **fields
    ):
        connection = Connection(
            user_id=user.id,
            provider_id=provider_id,
            display_name=fields.pop("display_name", "Test Bank"),
            connection_type=connection_type,
            status=status,
            auto_sync_enabled=fields.pop("auto_sync_enabled", True),
            sync_status=sync_status,
            encrypted_config=fields.pop("encrypted_config", None) or encryption.encrypt_config(config),
            **fields
        )
        db.add(connection)
        db.commit()
        db.refresh(connection)
        return connection

    return _create


@pytest.fixture
def account_factory(db):
    def _create(user, connection=None, account_type=ConnectionType.BANK, iban=None, **fields):
        account = FinancialAccount(
            user_id=user.id,
            connection_id=connection.id if connection is not None else None,
            account_type=account_type,
            provider=connection.provider_id if connection is not None else "manual",
            name=fields.pop("name", "Checking"),
            currency=fields.pop("currency", "EUR"),
            iban=iban,
            **fields
        )
        db.add(account)
        db.commit()
        db.refresh(account)
        return account

    return _create


@pytest.fixture
def transaction_factory(db):
    sequence = count(1)

    def _create(account, amount="10.00", direction=TransactionDirection.OUT, **fields):
        tx = AccountTransaction(
            account_id=account.id,
            amount=Decimal(amount),
            direction=direction,
            currency=fields.pop("currency", "EUR"),
            external_id=fields.pop("external_id", f"tx-{next(sequence)}"),
            **fields
        )
        db.add(tx)
        db.commit()
        db.refresh(tx)
        return tx

    return _create
