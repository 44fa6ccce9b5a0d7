from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import date, datetime
from decimal import Decimal

from .models import (
    ConnectionType, ConnectionStatus, SyncStatus, TransactionDirection, CategorySource,
    CategoryMatchType, CategoryMatchMode
)


class TokenData(BaseModel):
    email: Optional[str] = None


# Providers & connections
class ProviderFieldResponse(BaseModel):
    key: str
    label: str
    secret: bool = False
    required: bool = True


class ProviderResponse(BaseModel):
    provider_id: str
    name: str
    connection_type: ConnectionType
    requires_auth: bool
    fields: List[ProviderFieldResponse] = []


class ConnectionCreate(BaseModel):
    provider_id: str
    display_name: Optional[str] = None
    config: Optional[Dict[str, str]] = None


class ConnectionUpdate(BaseModel):
    display_name: Optional[str] = None
    auto_sync_enabled: Optional[bool] = None


class ConnectionResponse(BaseModel):
    id: int
    provider_id: str
    display_name: str
    connection_type: ConnectionType
    status: ConnectionStatus
    auto_sync_enabled: bool
    last_synced_at: Optional[datetime] = None
    sync_status: SyncStatus
    sync_stage: Optional[str] = None
    sync_progress: Optional[int] = None
    last_sync_started_at: Optional[datetime] = None
    last_sync_completed_at: Optional[datetime] = None
    last_sync_error: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ConnectResponse(BaseModel):
    redirect_url: Optional[str] = None


# Categorization
class RuleRequest(BaseModel):
    match_type: Optional[str] = None
    match_value: Optional[str] = None
    match_mode: Optional[str] = None
    category: Optional[str] = None
    apply_to_history: bool = False


class RuleResponse(BaseModel):
    id: int
    match_type: CategoryMatchType
    match_value: str
    match_mode: CategoryMatchMode = CategoryMatchMode.CONTAINS
    category: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RecategorizeResponse(BaseModel):
    updated: int
    total: int
    ai_count: int = 0


class CategoryResponse(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


class TransactionCategoryUpdate(BaseModel):
    category: str
    apply_to_future: bool = False


class TransactionResponse(BaseModel):
    id: int
    account_id: int
    amount: Decimal
    currency: Optional[str] = None
    direction: TransactionDirection
    description: Optional[str] = None
    merchant_name: Optional[str] = None
    counterparty_iban: Optional[str] = None
    booking_date: Optional[date] = None
    value_date: Optional[date] = None
    transaction_type: Optional[str] = None
    category: Optional[str] = None
    category_source: Optional[CategorySource] = None
    category_confidence: Optional[float] = None
    category_reason: Optional[str] = None

    class Config:
        from_attributes = True


# Admin
class AdminSettingsUpdate(BaseModel):
    sync_enabled: Optional[bool] = None
    sync_interval_ms: Optional[int] = Field(None, ge=0)
    crypto_sync_interval_ms: Optional[int] = None
    ai_enabled: Optional[bool] = None
    ai_model: Optional[str] = None


class AdminSettingsResponse(BaseModel):
    sync_enabled: bool
    sync_interval_ms: int
    crypto_sync_interval_ms: int
    ai_enabled: bool
    ai_model: str
    ai_available: bool
    ai_disabled_until: Optional[datetime] = None
    ai_last_error: Optional[str] = None
    ai_last_error_at: Optional[datetime] = None


class AiKeyTestResponse(BaseModel):
    ok: bool
    code: str
    message: str
