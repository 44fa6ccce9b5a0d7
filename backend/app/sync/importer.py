"""
Transaction Import Module

Idempotent upsert of upstream transactions into the ledger. Identity is the
(account, external id) pair:
1. Upstream transaction id when the provider has one
2. Synthetic id from a hash of the transaction's stable attributes otherwise

Re-importing a known transaction fills in fields the earlier import lacked
and corrects the direction; it never creates a second row.
"""

import enum
import hashlib
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from backend.app.models import (
    AccountTransaction, Connection, ConnectionType, FinancialAccount, TransactionDirection, utcnow
)
from backend.app.categorization import CategorizationCascade

logger = logging.getLogger(__name__)

BACKFILL_FIELDS = (
    'booking_date',
    'value_date',
    'description',
    'counterparty_iban',
    'merchant_name',
    'transaction_type',
    'currency',
    'amount',
)


class ImportOutcome(str, enum.Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    UNCHANGED = "UNCHANGED"


@dataclass
class ImportedTransaction:
    """Provider-neutral transaction as handed over by an adapter."""
    amount: Decimal
    direction: Optional[TransactionDirection] = None
    external_id: Optional[str] = None
    currency: Optional[str] = None
    description: Optional[str] = None
    merchant_name: Optional[str] = None
    counterparty_iban: Optional[str] = None
    booking_date: Optional[date] = None
    value_date: Optional[date] = None
    transaction_type: Optional[str] = None
    status: Optional[str] = None
    provider_transaction_id: Optional[str] = None


def synthetic_external_id(provider_id: str, *parts) -> str:
    """
    Derive a stable external id for upstream rows that carry none.

    Example:
        >>> synthetic_external_id("manual", date(2024, 1, 15), Decimal("12.50"), "OUT", "Coffee").startswith("manual:")
        True
    """
    fingerprint = "|".join("" if part is None else str(part) for part in parts)
    return f"{provider_id}:{hashlib.sha256(fingerprint.encode()).hexdigest()}"


class TransactionImporter:
    """Upserts accounts and transactions for one sync run."""

    def __init__(self, db: Session, cascade: CategorizationCascade):
        self.db = db
        self.cascade = cascade

    def get_or_create_account(
        self,
        connection: Connection,
        external_id: str,
        name: str,
        currency: str = "EUR",
        iban: Optional[str] = None,
        account_number: Optional[str] = None,
        account_type: Optional[ConnectionType] = None,
        balance: Optional[Decimal] = None
    ) -> FinancialAccount:
        """
        Find the connection's account with this external id or create it.

        Identifiers and balance are refreshed on every call. A changed IBAN or
        account number drops the user's cached own-account identifiers so
        internal transfer detection sees it immediately.
        """
        account = self.db.query(FinancialAccount).filter(
            FinancialAccount.connection_id == connection.id,
            FinancialAccount.external_id == external_id
        ).first()

        if account is None:
            account = FinancialAccount(
                user_id=connection.user_id,
                connection_id=connection.id,
                external_id=external_id,
                account_type=account_type or connection.connection_type,
                provider=connection.provider_id,
                name=name,
                currency=currency or "EUR",
            )
            self.db.add(account)

        identifiers_changed = False
        if iban and account.iban != iban:
            account.iban = iban
            identifiers_changed = True
        if account_number and account.account_number != account_number:
            account.account_number = account_number
            identifiers_changed = True
        if balance is not None:
            account.current_balance = balance
        account.last_synced_at = utcnow()
        self.db.commit()
        self.db.refresh(account)

        if identifiers_changed:
            self.cascade.identifier_cache.invalidate(connection.user_id)
        return account

    async def import_transaction(self, account: FinancialAccount, item: ImportedTransaction) -> ImportOutcome:
        """
        Insert or update one transaction.

        Args:
            account: Account the transaction belongs to
            item: Provider-neutral transaction; a signed amount without a
                direction is split into absolute amount and direction

        Returns:
            ImportOutcome.CREATED, UPDATED or UNCHANGED
        """
        amount = Decimal(item.amount)
        direction = item.direction
        if direction is None:
            direction = TransactionDirection.IN if amount >= 0 else TransactionDirection.OUT
        amount = abs(amount)

        external_id = item.external_id or synthetic_external_id(
            account.provider or "import",
            item.booking_date,
            format(amount.normalize(), "f"),
            direction.value,
            item.description,
            item.counterparty_iban,
        )

        values = {
            'booking_date': item.booking_date,
            'value_date': item.value_date,
            'description': item.description,
            'counterparty_iban': item.counterparty_iban,
            'merchant_name': item.merchant_name,
            'transaction_type': item.transaction_type,
            'currency': item.currency or account.currency,
            'amount': amount,
        }

        existing = self.db.query(AccountTransaction).filter(
            AccountTransaction.account_id == account.id,
            AccountTransaction.external_id == external_id
        ).first()

        if existing is not None:
            changed = False
            for field in BACKFILL_FIELDS:
                if getattr(existing, field) is None and values[field] is not None:
                    setattr(existing, field, values[field])
                    changed = True
            if existing.direction != direction:
                existing.direction = direction
                changed = True
            if existing.category is None:
                await self._categorize(account, existing)
                changed = True
            if not changed:
                return ImportOutcome.UNCHANGED
            self.db.commit()
            return ImportOutcome.UPDATED

        tx = AccountTransaction(
            account_id=account.id,
            external_id=external_id,
            direction=direction,
            provider_transaction_id=item.provider_transaction_id,
            status=item.status,
            **values
        )
        await self._categorize(account, tx)
        self.db.add(tx)
        self.db.commit()
        logger.debug(f"Imported transaction {external_id} on account {account.id} as {tx.category}")
        return ImportOutcome.CREATED

    async def _categorize(self, account: FinancialAccount, tx: AccountTransaction):
        result = await self.cascade.classify(
            self.db,
            account.user_id,
            tx.description,
            tx.merchant_name,
            tx.direction,
            tx.transaction_type,
            account.account_type,
            currency=tx.currency,
            amount=tx.amount,
            counterparty_iban=tx.counterparty_iban,
        )
        tx.category = result.category
        tx.category_source = result.source
        tx.category_confidence = result.confidence
        tx.category_reason = result.reason
