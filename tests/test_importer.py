"""
Tests for the idempotent transaction import.
"""

from datetime import date
from decimal import Decimal

import pytest

from backend.app.categorization import CategorizationCascade
from backend.app.models import AccountTransaction, CategorySource, FinancialAccount, TransactionDirection
from backend.app.sync.importer import ImportedTransaction, ImportOutcome, TransactionImporter, synthetic_external_id


@pytest.fixture
def cascade():
    return CategorizationCascade()


@pytest.fixture
def importer(db, cascade):
    return TransactionImporter(db, cascade)


@pytest.fixture
def account(importer, user, connection_factory):
    connection = connection_factory(user)
    return importer.get_or_create_account(connection, "acc-1", "Checking")


class TestTransactionImporter:

    @pytest.mark.asyncio
    async def test_reimport_backfills_missing_value_date(self, db, importer, account):
        first = ImportedTransaction(
            amount=Decimal("25.00"),
            direction=TransactionDirection.OUT,
            external_id="ext-1",
            description="Colruyt Gent",
            booking_date=date(2024, 5, 2),
        )
        second = ImportedTransaction(
            amount=Decimal("25.00"),
            direction=TransactionDirection.OUT,
            external_id="ext-1",
            description="Colruyt Gent",
            booking_date=date(2024, 5, 2),
            value_date=date(2024, 5, 3),
        )

        assert await importer.import_transaction(account, first) == ImportOutcome.CREATED
        assert await importer.import_transaction(account, second) == ImportOutcome.UPDATED

        rows = db.query(AccountTransaction).filter(AccountTransaction.account_id == account.id).all()
        assert len(rows) == 1
        assert rows[0].value_date == date(2024, 5, 3)
        assert rows[0].category == "Boodschappen"

    @pytest.mark.asyncio
    async def test_identical_reimport_is_unchanged(self, db, importer, account):
        item = ImportedTransaction(amount=Decimal("9.99"), external_id="ext-2", description="Spotify")

        await importer.import_transaction(account, item)

        assert await importer.import_transaction(account, item) == ImportOutcome.UNCHANGED
        assert db.query(AccountTransaction).count() == 1

    @pytest.mark.asyncio
    async def test_signed_amount_sets_direction(self, db, importer, account):
        await importer.import_transaction(
            account, ImportedTransaction(amount=Decimal("-12.50"), external_id="out", description="Lidl")
        )
        await importer.import_transaction(
            account, ImportedTransaction(amount=Decimal("2500"), external_id="in", description="Salaris")
        )

        out_tx = db.query(AccountTransaction).filter(AccountTransaction.external_id == "out").one()
        in_tx = db.query(AccountTransaction).filter(AccountTransaction.external_id == "in").one()
        assert out_tx.amount == Decimal("12.50")
        assert out_tx.direction == TransactionDirection.OUT
        assert out_tx.category == "Boodschappen"
        assert out_tx.currency == "EUR"
        assert in_tx.direction == TransactionDirection.IN
        assert in_tx.category == "Inkomen"

    @pytest.mark.asyncio
    async def test_synthetic_id_is_stable(self, db, importer, account):
        first = ImportedTransaction(
            amount=Decimal("-12.5"), description="Bakker", booking_date=date(2024, 5, 2)
        )
        second = ImportedTransaction(
            amount=Decimal("-12.50"), description="Bakker", booking_date=date(2024, 5, 2)
        )

        assert await importer.import_transaction(account, first) == ImportOutcome.CREATED
        assert await importer.import_transaction(account, second) == ImportOutcome.UNCHANGED

        tx = db.query(AccountTransaction).one()
        assert tx.external_id.startswith("manual:")
        assert tx.external_id == synthetic_external_id(
            "manual", date(2024, 5, 2), "12.5", "OUT", "Bakker", None
        )

    @pytest.mark.asyncio
    async def test_direction_is_corrected(self, db, importer, account):
        await importer.import_transaction(
            account, ImportedTransaction(amount=Decimal("40"), direction=TransactionDirection.OUT, external_id="dir")
        )

        outcome = await importer.import_transaction(
            account, ImportedTransaction(amount=Decimal("40"), direction=TransactionDirection.IN, external_id="dir")
        )

        assert outcome == ImportOutcome.UPDATED
        assert db.query(AccountTransaction).one().direction == TransactionDirection.IN

    @pytest.mark.asyncio
    async def test_uncategorized_row_gets_category(self, db, importer, account, transaction_factory):
        transaction_factory(account, external_id="old", description="Netflix")

        outcome = await importer.import_transaction(
            account, ImportedTransaction(amount=Decimal("10.00"), direction=TransactionDirection.OUT,
                                         external_id="old", description="Netflix")
        )

        tx = db.query(AccountTransaction).one()
        assert outcome == ImportOutcome.UPDATED
        assert tx.category == "Abonnementen"
        assert tx.category_source == CategorySource.RULE

    @pytest.mark.asyncio
    async def test_new_own_iban_invalidates_identifier_cache(self, db, importer, cascade, account, user):
        assert cascade.identifier_cache.get(db, user.id) == frozenset()

        importer.get_or_create_account(account.connection, "acc-2", "Savings", iban="NL91ABNA0417164300")
        await importer.import_transaction(
            account,
            ImportedTransaction(amount=Decimal("-100"), external_id="save", description="Sparen",
                                counterparty_iban="NL91ABNA0417164300")
        )

        tx = db.query(AccountTransaction).filter(AccountTransaction.external_id == "save").one()
        assert tx.category == "Transfer"
        assert tx.category_reason == "Eigen rekening"


def test_get_or_create_account_is_idempotent(db, importer, user, connection_factory):
    connection = connection_factory(user)

    first = importer.get_or_create_account(connection, "acc-1", "Checking", balance=Decimal("10"))
    second = importer.get_or_create_account(connection, "acc-1", "Checking", balance=Decimal("20"))

    assert first.id == second.id
    assert second.current_balance == Decimal("20")
    assert second.user_id == user.id
    assert second.provider == "manual"
    assert db.query(FinancialAccount).count() == 1
