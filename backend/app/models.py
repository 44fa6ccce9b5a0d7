from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date, DECIMAL, Text, Float, ForeignKey, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from datetime import datetime, timezone
import enum
from backend.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the database hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ConnectionType(str, enum.Enum):
    BANK = "BANK"
    CRYPTO = "CRYPTO"
    INVESTMENT = "INVESTMENT"


class ConnectionStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    ERROR = "ERROR"
    DISABLED = "DISABLED"


class SyncStatus(str, enum.Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class TransactionDirection(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"


class CategoryMatchType(str, enum.Enum):
    IBAN = "IBAN"
    MERCHANT = "MERCHANT"
    DESCRIPTION = "DESCRIPTION"


class CategoryMatchMode(str, enum.Enum):
    EXACT = "EXACT"
    CONTAINS = "CONTAINS"


class CategorySource(str, enum.Enum):
    RULE = "rule"
    OVERRIDE = "override"
    AI = "ai"
    MANUAL = "manual"
    SYSTEM = "system"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False, default="")
    is_active = Column(Boolean, default=True)
    is_admin = Column(Boolean, default=False)
    created_at = Column(DateTime, server_default=func.now())

    connections = relationship("Connection", back_populates="user")
    accounts = relationship("FinancialAccount", back_populates="user")


class Connection(Base):
    """A user's link to one upstream source (bank aggregator, exchange, manual upload)."""
    __tablename__ = "connections"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(String(64), nullable=False)
    display_name = Column(String(255), nullable=False)
    connection_type = Column(SQLEnum(ConnectionType), nullable=False, default=ConnectionType.BANK)
    status = Column(SQLEnum(ConnectionStatus), nullable=False, default=ConnectionStatus.PENDING)
    auto_sync_enabled = Column(Boolean, nullable=False, default=True)
    encrypted_config = Column(Text, nullable=True)
    external_id = Column(String(255), nullable=True)

    # Sync state, written only by the orchestrator and progress reporter
    sync_status = Column(SQLEnum(SyncStatus), nullable=False, default=SyncStatus.IDLE)
    sync_stage = Column(String(255), nullable=True)
    sync_progress = Column(Integer, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    last_sync_started_at = Column(DateTime, nullable=True)
    last_sync_completed_at = Column(DateTime, nullable=True)
    last_sync_error = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="connections")
    accounts = relationship("FinancialAccount", back_populates="connection")


class FinancialAccount(Base):
    __tablename__ = "financial_accounts"
    __table_args__ = (
        UniqueConstraint("connection_id", "external_id", name="uq_account_connection_external"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    connection_id = Column(Integer, ForeignKey("connections.id"), nullable=True, index=True)
    account_type = Column(SQLEnum(ConnectionType), nullable=False, default=ConnectionType.BANK)
    provider = Column(String(64), nullable=True)
    name = Column(String(255), nullable=False)
    currency = Column(String(10), nullable=False, default="EUR")
    external_id = Column(String(255), nullable=True)
    iban = Column(String(64), nullable=True)
    account_number = Column(String(64), nullable=True)
    current_balance = Column(DECIMAL(18, 8), nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="accounts")
    connection = relationship("Connection", back_populates="accounts")
    transactions = relationship("AccountTransaction", back_populates="account")


class AccountTransaction(Base):
    """A single imported movement on a financial account."""
    __tablename__ = "account_transactions"
    __table_args__ = (
        UniqueConstraint("account_id", "external_id", name="uq_transaction_account_external"),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("financial_accounts.id"), nullable=False, index=True)
    amount = Column(DECIMAL(18, 8), nullable=False)  # always positive, sign lives in direction
    currency = Column(String(10), nullable=True)
    direction = Column(SQLEnum(TransactionDirection), nullable=False)
    description = Column(Text, nullable=True)
    merchant_name = Column(String(255), nullable=True)
    counterparty_iban = Column(String(64), nullable=True)
    booking_date = Column(Date, nullable=True)
    value_date = Column(Date, nullable=True)
    external_id = Column(String(255), nullable=False)
    provider_transaction_id = Column(String(255), nullable=True)
    status = Column(String(32), nullable=True)
    transaction_type = Column(String(64), nullable=True)

    category = Column(String(100), nullable=True)
    category_source = Column(SQLEnum(CategorySource), nullable=True)
    category_confidence = Column(Float, nullable=True)
    category_reason = Column(String(255), nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    account = relationship("FinancialAccount", back_populates="transactions")


class CategoryOverride(Base):
    """User-defined rule mapping an IBAN, merchant or description to a category."""
    __tablename__ = "category_overrides"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    match_type = Column(SQLEnum(CategoryMatchType), nullable=False)
    match_mode = Column(SQLEnum(CategoryMatchMode), nullable=False, default=CategoryMatchMode.CONTAINS)
    match_value = Column(String(255), nullable=False)
    category = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    def touch(self):
        self.updated_at = utcnow()


class TransactionCategory(Base):
    __tablename__ = "transaction_categories"
    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class AppSettings(Base):
    """Singleton row holding admin-tunable runtime knobs and the AI cooldown state."""
    __tablename__ = "app_settings"

    id = Column(Integer, primary_key=True, index=True)
    sync_enabled = Column(Boolean, nullable=False, default=True)
    sync_interval_ms = Column(Integer, nullable=False)
    crypto_sync_interval_ms = Column(Integer, nullable=True)
    ai_enabled = Column(Boolean, nullable=False, default=False)
    ai_model = Column(String(100), nullable=True)
    ai_disabled_until = Column(DateTime, nullable=True)
    ai_last_error = Column(Text, nullable=True)
    ai_last_error_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
