"""
Category Override Store

User-defined rules that pin an IBAN, merchant or description to a category.
Match values are stored normalized (lowercase, alphanumerics only) so that
"Albert Heijn 1234" and "ALBERT-HEIJN 1234" hit the same rule.
"""

import re
import logging
from typing import Optional, List

from sqlalchemy.orm import Session

from backend.app.models import (
    CategoryOverride, CategoryMatchType, CategoryMatchMode, AccountTransaction
)

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r'\s+')
_NON_ALNUM = re.compile(r'[^a-z0-9]+')


def normalize(value: Optional[str]) -> Optional[str]:
    """
    Normalize free text for override matching.

    Example:
        >>> normalize("  Albert Heijn 1234 ")
        'albertheijn1234'
        >>> normalize("--") is None
        True
    """
    if value is None:
        return None
    cleaned = _NON_ALNUM.sub('', _WHITESPACE.sub(' ', value.lower())).strip()
    return cleaned or None


def parse_match_type(value: Optional[str]) -> CategoryMatchType:
    try:
        return CategoryMatchType(value.strip().upper())
    except (AttributeError, ValueError):
        raise ValueError("Invalid match type")


def parse_match_mode(value: Optional[str]) -> CategoryMatchMode:
    if value is None or not value.strip():
        return CategoryMatchMode.CONTAINS
    try:
        return CategoryMatchMode(value.strip().upper())
    except ValueError:
        raise ValueError("Invalid match mode")


def default_match_mode(match_type: CategoryMatchType) -> CategoryMatchMode:
    return CategoryMatchMode.EXACT if match_type == CategoryMatchType.IBAN else CategoryMatchMode.CONTAINS


def _mode(rule: CategoryOverride) -> CategoryMatchMode:
    return rule.match_mode or CategoryMatchMode.CONTAINS


def _specificity(rule: CategoryOverride):
    # EXACT outranks CONTAINS, then the longer match value wins
    return (1 if _mode(rule) == CategoryMatchMode.EXACT else 0, len(rule.match_value or ""))


def _matches_value(value: Optional[str], rule: CategoryOverride) -> bool:
    if value is None or rule is None or not rule.match_value:
        return False
    if _mode(rule) == CategoryMatchMode.EXACT:
        return value == rule.match_value
    return rule.match_value in value


class OverrideStore:
    """
    Read path (find_override) used by the categorization cascade, plus the
    CRUD operations behind the rules API and "apply to future" recategorization.
    """

    def __init__(self, db: Session):
        self.db = db

    def _by_type(self, user_id: int, match_type: CategoryMatchType) -> List[CategoryOverride]:
        return self.db.query(CategoryOverride).filter(
            CategoryOverride.user_id == user_id,
            CategoryOverride.match_type == match_type
        ).order_by(CategoryOverride.id).all()

    def find_by_value(
        self,
        user_id: int,
        match_type: CategoryMatchType,
        match_value: str
    ) -> Optional[CategoryOverride]:
        return self.db.query(CategoryOverride).filter(
            CategoryOverride.user_id == user_id,
            CategoryOverride.match_type == match_type,
            CategoryOverride.match_value == match_value
        ).order_by(CategoryOverride.id).first()

    def find_override(
        self,
        user_id: Optional[int],
        merchant: Optional[str],
        description: Optional[str],
        counterparty_iban: Optional[str]
    ) -> Optional[CategoryOverride]:
        """
        Find the most specific override for a transaction.

        IBAN rules are checked first (exact match on the normalized IBAN), then
        merchant rules, then description rules. Within one match type the most
        specific matching rule wins: EXACT before CONTAINS, longer value before
        shorter.

        Args:
            user_id: Owner of the rules
            merchant: Merchant name as imported
            description: Transaction description as imported
            counterparty_iban: Counterparty IBAN as imported

        Returns:
            Matching CategoryOverride, or None
        """
        if user_id is None:
            return None

        iban = normalize(counterparty_iban)
        if iban is not None:
            rule = self.find_by_value(user_id, CategoryMatchType.IBAN, iban)
            if rule is not None:
                return rule

        for match_type, raw in ((CategoryMatchType.MERCHANT, merchant), (CategoryMatchType.DESCRIPTION, description)):
            key = normalize(raw)
            if key is None:
                continue
            candidates = [rule for rule in self._by_type(user_id, match_type) if _matches_value(key, rule)]
            if candidates:
                return max(candidates, key=_specificity)
        return None

    @staticmethod
    def matches(rule: CategoryOverride, tx: AccountTransaction) -> bool:
        """Check whether an existing transaction falls under a rule."""
        if rule.match_type == CategoryMatchType.IBAN:
            return normalize(tx.counterparty_iban) == rule.match_value
        if rule.match_type == CategoryMatchType.MERCHANT:
            return _matches_value(normalize(tx.merchant_name), rule)
        return _matches_value(normalize(tx.description), rule)

    def list_rules(self, user_id: int) -> List[CategoryOverride]:
        return self.db.query(CategoryOverride).filter(
            CategoryOverride.user_id == user_id
        ).order_by(CategoryOverride.id).all()

    def get_rule(self, user_id: int, rule_id: int) -> Optional[CategoryOverride]:
        return self.db.query(CategoryOverride).filter(
            CategoryOverride.id == rule_id,
            CategoryOverride.user_id == user_id
        ).first()

    def create_rule(
        self,
        user_id: int,
        match_type: str,
        match_value: str,
        category: str,
        match_mode: Optional[str] = None
    ) -> CategoryOverride:
        """
        Create a rule from raw request values.

        Raises:
            ValueError: If a field is missing or the match type/mode is unknown
        """
        parsed_type = parse_match_type(match_type)
        mode = parse_match_mode(match_mode)
        if parsed_type == CategoryMatchType.IBAN:
            mode = CategoryMatchMode.EXACT
        value = normalize(match_value)
        if value is None:
            raise ValueError("matchValue is invalid")
        if not category or not category.strip():
            raise ValueError("category is required")

        rule = CategoryOverride(
            user_id=user_id,
            match_type=parsed_type,
            match_mode=mode,
            match_value=value,
            category=category.strip(),
        )
        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        logger.info(f"Created {parsed_type.value} rule {rule.id} for user {user_id}")
        return rule

    def update_rule(
        self,
        rule: CategoryOverride,
        match_type: Optional[str] = None,
        match_value: Optional[str] = None,
        category: Optional[str] = None,
        match_mode: Optional[str] = None
    ) -> CategoryOverride:
        if match_type and match_type.strip():
            rule.match_type = parse_match_type(match_type)
        if match_value and match_value.strip():
            value = normalize(match_value)
            if value is None:
                raise ValueError("matchValue is invalid")
            rule.match_value = value
        if match_mode and match_mode.strip():
            rule.match_mode = parse_match_mode(match_mode)
        if rule.match_type == CategoryMatchType.IBAN:
            rule.match_mode = CategoryMatchMode.EXACT
        if category and category.strip():
            rule.category = category.strip()
        rule.touch()
        self.db.commit()
        self.db.refresh(rule)
        return rule

    def delete_rule(self, rule: CategoryOverride):
        self.db.delete(rule)
        self.db.commit()

    def upsert_for_transaction(self, user_id: int, tx: AccountTransaction, category: str) -> Optional[CategoryOverride]:
        """
        Turn a manual category choice into a rule for future imports.

        The match type is the most specific field the transaction carries:
        counterparty IBAN, else merchant, else description. An existing rule
        for the same (user, type, value) is updated in place.

        Returns:
            The created or updated rule, or None when the transaction has
            nothing to match on
        """
        match_type = None
        if tx.counterparty_iban and tx.counterparty_iban.strip():
            match_type = CategoryMatchType.IBAN
            value = normalize(tx.counterparty_iban)
        elif tx.merchant_name and tx.merchant_name.strip():
            match_type = CategoryMatchType.MERCHANT
            value = normalize(tx.merchant_name)
        elif tx.description and tx.description.strip():
            match_type = CategoryMatchType.DESCRIPTION
            value = normalize(tx.description)
        if match_type is None or value is None:
            return None

        rule = self.find_by_value(user_id, match_type, value)
        if rule is None:
            rule = CategoryOverride(
                user_id=user_id,
                match_type=match_type,
                match_mode=default_match_mode(match_type),
                match_value=value,
                category=category,
            )
            self.db.add(rule)
        else:
            rule.category = category
            if rule.match_mode is None:
                rule.match_mode = default_match_mode(match_type)
        rule.touch()
        self.db.flush()
        return rule
