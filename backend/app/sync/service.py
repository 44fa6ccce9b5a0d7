"""
Connection Service

User-facing connection management:
- Listing providers and connections
- Creating, updating and soft-disabling connections
- Starting the provider link flow
- Requesting a sync
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from backend.app.models import Connection, ConnectionStatus, SyncStatus
from .orchestrator import SyncOrchestrator
from .providers import ProviderContext, ProviderInfo
from .importer import TransactionImporter
from .progress import SyncProgressReporter

logger = logging.getLogger(__name__)


class ConnectionNotFoundError(LookupError):
    pass


class ConnectionService:
    """
    Main service for connection management.

    Sync state is never written here; every state change goes through the
    orchestrator.
    """

    def __init__(self, db: Session, orchestrator: SyncOrchestrator):
        """
        Initialize service with database session.

        Args:
            db: SQLAlchemy database session
            orchestrator: Process-wide sync orchestrator
        """
        self.db = db
        self.orchestrator = orchestrator

    def list_providers(self) -> List[ProviderInfo]:
        return self.orchestrator.registry.list()

    def list_connections(self, user_id: int) -> List[Connection]:
        return self.db.query(Connection).filter(
            Connection.user_id == user_id,
            Connection.status != ConnectionStatus.DISABLED
        ).order_by(Connection.id).all()

    def get_connection(self, user_id: int, connection_id: int) -> Connection:
        connection = self.db.query(Connection).filter(
            Connection.id == connection_id,
            Connection.user_id == user_id
        ).first()
        if connection is None:
            raise ConnectionNotFoundError("Connection not found")
        return connection

    def create_connection(
        self,
        user_id: int,
        provider_id: str,
        display_name: Optional[str] = None,
        config: Optional[Dict[str, str]] = None
    ) -> Connection:
        """
        Create a connection for a registered provider.

        Providers that need an authorization step start PENDING; others are
        ACTIVE right away and picked up by the scheduler.

        Raises:
            UnknownProviderError: If no adapter is registered for provider_id
        """
        info = self.orchestrator.registry.require(provider_id).info
        connection = Connection(
            user_id=user_id,
            provider_id=info.provider_id,
            connection_type=info.connection_type,
            display_name=display_name.strip() if display_name and display_name.strip() else info.name,
            status=ConnectionStatus.PENDING if info.requires_auth else ConnectionStatus.ACTIVE,
            auto_sync_enabled=True,
            sync_status=SyncStatus.IDLE,
            encrypted_config=self.orchestrator.encryption.encrypt_config(config),
        )
        self.db.add(connection)
        self.db.commit()
        self.db.refresh(connection)
        logger.info(f"Created {info.provider_id} connection {connection.id} for user {user_id}")
        return connection

    def update_connection(
        self,
        user_id: int,
        connection_id: int,
        display_name: Optional[str] = None,
        auto_sync_enabled: Optional[bool] = None
    ) -> Connection:
        connection = self.get_connection(user_id, connection_id)
        if display_name and display_name.strip():
            connection.display_name = display_name.strip()
        if auto_sync_enabled is not None:
            connection.auto_sync_enabled = auto_sync_enabled
        self.db.commit()
        self.db.refresh(connection)
        return connection

    def disable_connection(self, user_id: int, connection_id: int):
        connection = self.get_connection(user_id, connection_id)
        connection.status = ConnectionStatus.DISABLED
        connection.auto_sync_enabled = False
        self.db.commit()
        logger.info(f"Disabled connection {connection.id}")

    async def initiate_connection(self, user_id: int, connection_id: int) -> Optional[str]:
        """
        Run the provider's link step.

        Returns:
            Redirect URL for OAuth-style providers, None otherwise
        """
        connection = self.get_connection(user_id, connection_id)
        config = self.orchestrator.encryption.decrypt_config(connection.encrypted_config)
        context = ProviderContext(
            db=self.db,
            importer=TransactionImporter(self.db, self.orchestrator.cascade),
            progress=SyncProgressReporter(self.db),
        )
        adapter = self.orchestrator.registry.create(connection.provider_id, context)
        result = await adapter.initiate(connection, config)
        connection.external_id = result.external_id
        connection.status = result.status
        self.db.commit()
        return result.redirect_url

    def request_sync(self, user_id: int, connection_id: int) -> Connection:
        connection = self.get_connection(user_id, connection_id)
        self.orchestrator.request_sync(self.db, connection)
        self.db.refresh(connection)
        return connection

