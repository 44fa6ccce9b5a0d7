"""
Bulk and manual recategorization of already imported transactions.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import Session

from backend.app.models import AccountTransaction, FinancialAccount, CategoryOverride, CategorySource
from .cascade import CategorizationCascade
from .overrides import OverrideStore
from .rules import OTHER_CATEGORY

logger = logging.getLogger(__name__)

MAX_AI_REQUESTS_PER_RELABEL_RUN = 30


@dataclass(frozen=True)
class RecategorizeOutcome:
    updated: int
    total: int
    ai_count: int = 0


def user_transactions(db: Session, user_id: int) -> List[AccountTransaction]:
    return db.query(AccountTransaction).join(FinancialAccount).filter(
        FinancialAccount.user_id == user_id
    ).order_by(AccountTransaction.id).all()


def get_user_transaction(db: Session, user_id: int, transaction_id: int) -> Optional[AccountTransaction]:
    return db.query(AccountTransaction).join(FinancialAccount).filter(
        AccountTransaction.id == transaction_id,
        FinancialAccount.user_id == user_id
    ).first()


async def recategorize_all(db: Session, cascade: CategorizationCascade, user_id: int) -> RecategorizeOutcome:
    """
    Run every transaction of a user through the cascade again.

    At most MAX_AI_REQUESTS_PER_RELABEL_RUN AI requests are made per run,
    whether or not they produce a usable answer. Once that budget is spent, a
    bare "Overig" fallback never replaces a category the transaction already
    has.
    """
    transactions = user_transactions(db, user_id)
    updated = 0
    ai_count = 0

    for tx in transactions:
        allow_ai = ai_count < MAX_AI_REQUESTS_PER_RELABEL_RUN
        result = await cascade.classify(
            db,
            user_id,
            tx.description,
            tx.merchant_name,
            tx.direction,
            tx.transaction_type,
            tx.account.account_type,
            currency=tx.currency,
            amount=tx.amount,
            counterparty_iban=tx.counterparty_iban,
            allow_ai=allow_ai
        )
        if result.ai_attempted:
            ai_count += 1

        if not allow_ai and result.category.lower() == OTHER_CATEGORY.lower() and tx.category and tx.category.strip():
            continue

        changed = (
            tx.category != result.category
            or tx.category_source != result.source
            or tx.category_reason != result.reason
            or tx.category_confidence != result.confidence
        )
        tx.category = result.category
        tx.category_source = result.source
        tx.category_confidence = result.confidence
        tx.category_reason = result.reason
        if changed:
            updated += 1

    db.commit()
    logger.info(f"Recategorized user {user_id}: {updated}/{len(transactions)} changed, {ai_count} AI requests")
    return RecategorizeOutcome(updated=updated, total=len(transactions), ai_count=ai_count)


def apply_rule_to_history(db: Session, rule: CategoryOverride) -> RecategorizeOutcome:
    """Apply one override to every existing transaction of its owner that it matches."""
    transactions = user_transactions(db, rule.user_id)
    updated = 0
    for tx in transactions:
        if not OverrideStore.matches(rule, tx):
            continue
        if (tx.category or "").lower() != rule.category.lower():
            updated += 1
        tx.category = rule.category
        tx.category_source = CategorySource.OVERRIDE
        tx.category_reason = "Gebruikersregel"
        tx.category_confidence = 0.98
    db.commit()
    return RecategorizeOutcome(updated=updated, total=len(transactions))


def update_transaction_category(
    db: Session,
    user_id: int,
    tx: AccountTransaction,
    category: Optional[str],
    apply_to_future: bool = False
) -> AccountTransaction:
    """
    Set a category by hand.

    With apply_to_future the choice also becomes an override rule keyed on the
    transaction's IBAN, merchant or description, whichever it has first.

    Raises:
        ValueError: If category is blank
    """
    category = (category or "").strip()
    if not category:
        raise ValueError("Category is required")

    tx.category = category
    tx.category_confidence = 1.0
    rule = OverrideStore(db).upsert_for_transaction(user_id, tx, category) if apply_to_future else None
    if rule is not None:
        tx.category_source = CategorySource.OVERRIDE
        tx.category_reason = f"Gebruikersregel ({rule.match_type.value})"
    else:
        tx.category_source = CategorySource.MANUAL
        tx.category_reason = "Handmatige aanpassing"

    db.commit()
    db.refresh(tx)
    return tx
