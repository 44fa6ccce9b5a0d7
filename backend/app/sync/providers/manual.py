"""
Manual provider

Connection whose config carries already-normalized entries (uploaded by the
user or produced by an external converter). Config keys:
- account_name: display name of the account (optional)
- currency: account currency, default EUR
- iban: account IBAN (optional)
- entries: JSON list of objects with amount, direction, booking_date,
  value_date, description, merchant, counterparty_iban, type, external_id
"""

import json
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from backend.app.models import Connection, ConnectionStatus, ConnectionType, TransactionDirection
from ..exceptions import ProviderConfigurationError
from ..importer import ImportedTransaction, ImportOutcome
from .base import ProviderAdapter, ProviderInfo, ProviderField, ConnectResult, SyncResult

logger = logging.getLogger(__name__)


def _parse_date(value: Any) -> Optional[date]:
    if value in (None, ""):
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ProviderConfigurationError(f"Invalid date: {value}")


def _parse_entry(raw: Dict[str, Any]) -> ImportedTransaction:
    try:
        amount = Decimal(str(raw['amount']))
    except (KeyError, InvalidOperation):
        raise ProviderConfigurationError("Entry without valid amount")

    direction = None
    if raw.get('direction'):
        try:
            direction = TransactionDirection(str(raw['direction']).upper())
        except ValueError:
            raise ProviderConfigurationError(f"Invalid direction: {raw['direction']}")

    return ImportedTransaction(
        amount=amount,
        direction=direction,
        external_id=raw.get('external_id') or None,
        currency=raw.get('currency') or None,
        description=raw.get('description') or None,
        merchant_name=raw.get('merchant') or None,
        counterparty_iban=raw.get('counterparty_iban') or None,
        booking_date=_parse_date(raw.get('booking_date')),
        value_date=_parse_date(raw.get('value_date')),
        transaction_type=raw.get('type') or None,
        status=raw.get('status') or None,
    )


class ManualProvider(ProviderAdapter):

    info = ProviderInfo(
        provider_id="manual",
        name="Handmatige import",
        connection_type=ConnectionType.BANK,
        requires_auth=False,
        fields=[
            ProviderField("account_name", "Rekeningnaam", required=False),
            ProviderField("currency", "Valuta", required=False),
            ProviderField("iban", "IBAN", required=False),
            ProviderField("entries", "Transacties (JSON)", required=False),
        ],
    )

    async def initiate(self, connection: Connection, config: Dict[str, str]) -> ConnectResult:
        return ConnectResult(
            redirect_url=None,
            external_id=connection.external_id or f"manual:{connection.id}",
            status=ConnectionStatus.ACTIVE,
        )

    def _entries(self, config: Dict[str, str]) -> List[ImportedTransaction]:
        raw = config.get('entries')
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError:
            raise ProviderConfigurationError("Entries are not valid JSON")
        if not isinstance(data, list):
            raise ProviderConfigurationError("Entries must be a JSON list")
        return [_parse_entry(item) for item in data if isinstance(item, dict)]

    async def sync(self, connection: Connection, config: Dict[str, str]) -> SyncResult:
        progress = self.context.progress
        importer = self.context.importer

        entries = self._entries(config)

        progress.update(connection, "Rekening bijwerken", 20)
        account = importer.get_or_create_account(
            connection,
            external_id=config.get('iban') or f"manual:{connection.id}",
            name=config.get('account_name') or connection.display_name,
            currency=config.get('currency') or "EUR",
            iban=config.get('iban') or None,
        )

        progress.update(connection, "Transacties importeren", 40)
        imported = 0
        total = len(entries)
        for index, entry in enumerate(entries, start=1):
            outcome = await importer.import_transaction(account, entry)
            if outcome != ImportOutcome.UNCHANGED:
                imported += 1
            progress.update(connection, "Transacties importeren", 40 + (50 * index) // total)

        progress.update(connection, "Afwerken", 95)
        logger.info(f"Manual connection {connection.id}: {imported} of {total} entries imported or updated")
        return SyncResult(accounts_updated=1, transactions_imported=imported)
