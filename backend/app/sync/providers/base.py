"""
Abstract base class for connection providers

Defines the common interface every upstream source (bank aggregator, crypto
exchange, file upload) implements. Adapters never write sync state; they
report progress through the context and hand rows to the importer.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from backend.app.models import Connection, ConnectionStatus, ConnectionType
from ..importer import TransactionImporter
from ..progress import SyncProgressReporter


@dataclass(frozen=True)
class ProviderField:
    key: str
    label: str
    secret: bool = False
    required: bool = True


@dataclass(frozen=True)
class ProviderInfo:
    provider_id: str
    name: str
    connection_type: ConnectionType
    requires_auth: bool
    fields: List[ProviderField] = field(default_factory=list)


@dataclass(frozen=True)
class ConnectResult:
    redirect_url: Optional[str]
    external_id: Optional[str]
    status: ConnectionStatus


@dataclass(frozen=True)
class SyncResult:
    accounts_updated: int
    transactions_imported: int
    status: str = "ok"


@dataclass
class ProviderContext:
    """Per-run collaborators handed to an adapter."""
    db: Session
    importer: TransactionImporter
    progress: SyncProgressReporter


class ProviderAdapter(ABC):
    """
    Abstract base class for connection providers.

    A new adapter instance is created for every sync run, so adapters may keep
    per-run state on self.
    """

    info: ProviderInfo

    def __init__(self, context: ProviderContext):
        """
        Initialize adapter with the collaborators of one run.

        Args:
            context: Session, importer and progress reporter for this run
        """
        self.context = context

    @property
    def provider_id(self) -> str:
        return self.info.provider_id

    @abstractmethod
    async def initiate(self, connection: Connection, config: Dict[str, str]) -> ConnectResult:
        """
        Start linking a connection to the upstream.

        Args:
            connection: Connection being linked
            config: Decrypted connection config

        Returns:
            ConnectResult with an optional redirect URL for OAuth-style flows,
            the upstream external id and the resulting connection status
        """
        pass

    @abstractmethod
    async def sync(self, connection: Connection, config: Dict[str, str]) -> SyncResult:
        """
        Fetch accounts and transactions and import them.

        Must be idempotent: every transaction goes through the importer's
        (account, external id) upsert. Raise on unrecoverable errors; rows
        already imported stay.

        Args:
            connection: Connection being synced
            config: Decrypted connection config

        Returns:
            SyncResult with counts of updated accounts and imported transactions

        Raises:
            ProviderConfigurationError: If credentials are missing or invalid
            RateLimitError: If the upstream rate-limits the client
        """
        pass
