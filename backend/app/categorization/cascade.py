"""
Categorization Cascade

Assigns a category to one transaction. Tiers are evaluated in order and the
first one that produces an answer wins:

1. Crypto account            -> Crypto    (0.95)
2. Counterparty is own IBAN  -> Transfer  (0.92)
3. Type TRANSFER             -> Transfer  (0.9)
4. Crypto exchange keyword   -> Crypto    (0.85)
5. Inbound money             -> Inkomen   (0.9)
6. User override             -> rule's category (0.98)
7. Keyword rules             -> category (0.7), or Overig (0.4)
8. AI fallback, only when tier 7 found nothing (0.72)
"""

import re
import time
import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from backend.app.models import (
    FinancialAccount, TransactionCategory, ConnectionType, TransactionDirection, CategorySource
)
from .overrides import OverrideStore, normalize
from .rules import CategoryRuleEngine, OTHER_CATEGORY

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    "Boodschappen",
    "Horeca",
    "Transport",
    "Shopping",
    "Abonnementen",
    "Utilities",
    "Huur/Hypotheek",
    "Gezondheid",
    "Onderwijs",
    "Cash",
    "Transfer",
    "Inkomen",
    "Crypto",
    "Overig",
]

CRYPTO_KEYWORDS = [
    "bitvavo", "coinbase", "kraken", "binance", "bitstamp", "kucoin", "gateio", "okx",
    "bybit", "cryptocom", "bitpanda", "coinmerce", "bitonic", "btcdirect",
]

IBAN_PATTERN = re.compile(r'\b[A-Z]{2}[0-9]{2}[A-Z0-9]{11,30}\b')

ACCOUNT_CACHE_TTL_SECONDS = 5 * 60


@dataclass(frozen=True)
class CategoryResult:
    category: str
    source: CategorySource
    confidence: float
    reason: str
    ai_attempted: bool = False


def extract_iban(value: Optional[str]) -> Optional[str]:
    if not value or not value.strip():
        return None
    match = IBAN_PATTERN.search(value.upper())
    return match.group(0) if match else None


def first_non_blank(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if value is not None and value.strip():
            return value
    return None


def allowed_categories(db: Session, user_id: Optional[int]) -> List[str]:
    """The user's category vocabulary, or the default set when they have none."""
    if user_id is None:
        return list(DEFAULT_CATEGORIES)
    names = [
        row.name for row in db.query(TransactionCategory).filter(
            TransactionCategory.user_id == user_id
        ).order_by(TransactionCategory.name).all()
        if row.name and row.name.strip()
    ]
    return names or list(DEFAULT_CATEGORIES)


def ensure_default_categories(db: Session, user_id: int) -> List[TransactionCategory]:
    """Seed the default vocabulary for a user who has no categories yet."""
    existing = db.query(TransactionCategory).filter(
        TransactionCategory.user_id == user_id
    ).order_by(TransactionCategory.name).all()
    if existing:
        return existing
    for name in DEFAULT_CATEGORIES:
        db.add(TransactionCategory(user_id=user_id, name=name))
    db.commit()
    return db.query(TransactionCategory).filter(
        TransactionCategory.user_id == user_id
    ).order_by(TransactionCategory.name).all()


class AccountIdentifierCache:
    """
    Per-user set of normalized IBANs and account numbers of the user's own
    accounts, kept for a short TTL so bulk imports do not query per row.
    """

    def __init__(self, ttl_seconds: float = ACCOUNT_CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[int, Tuple[float, FrozenSet[str]]] = {}

    def get(self, db: Session, user_id: int) -> FrozenSet[str]:
        now = self._clock()
        with self._lock:
            cached = self._entries.get(user_id)
            if cached is not None and cached[0] > now:
                return cached[1]

        identifiers = set()
        for account in db.query(FinancialAccount).filter(FinancialAccount.user_id == user_id).all():
            for value in (account.iban, account.account_number):
                key = normalize(value)
                if key is not None:
                    identifiers.add(key)
        frozen = frozenset(identifiers)

        with self._lock:
            for stale in [key for key, (expires, _) in self._entries.items() if expires <= now]:
                del self._entries[stale]
            self._entries[user_id] = (now + self.ttl_seconds, frozen)
        return frozen

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def invalidate(self, user_id: Optional[int] = None):
        with self._lock:
            if user_id is None:
                self._entries.clear()
            else:
                self._entries.pop(user_id, None)


class CategorizationCascade:
    """
    Stateless apart from the identifier cache and the shared AI classifier,
    so one instance serves every sync worker.
    """

    def __init__(
        self,
        ai_classifier=None,
        rule_engine: Optional[CategoryRuleEngine] = None,
        identifier_cache: Optional[AccountIdentifierCache] = None
    ):
        self.ai_classifier = ai_classifier
        self.rule_engine = rule_engine or CategoryRuleEngine()
        self.identifier_cache = identifier_cache if identifier_cache is not None else AccountIdentifierCache()

    async def classify(
        self,
        db: Session,
        user_id: Optional[int],
        description: Optional[str],
        merchant: Optional[str],
        direction: Optional[TransactionDirection],
        transaction_type: Optional[str],
        account_type: Optional[ConnectionType],
        currency: Optional[str] = None,
        amount: Optional[Union[Decimal, str]] = None,
        counterparty_iban: Optional[str] = None,
        allow_ai: bool = True
    ) -> CategoryResult:
        """
        Categorize one transaction.

        Args:
            db: Session used for override, account and vocabulary lookups
            user_id: Owner of the transaction
            description: Free-text description
            merchant: Merchant name
            direction: IN or OUT
            transaction_type: Upstream transaction type, e.g. "TRANSFER"
            account_type: Type of the account the transaction belongs to
            currency: ISO currency code (AI prompt only)
            amount: Positive amount (AI prompt only)
            counterparty_iban: Explicit counterparty IBAN, if the upstream has one
            allow_ai: False to skip the AI tier (bulk runs with an exhausted budget)

        Returns:
            CategoryResult with category, source, confidence and reason
        """
        if account_type == ConnectionType.CRYPTO:
            return CategoryResult("Crypto", CategorySource.RULE, 0.95, "Crypto account")

        detected_iban = first_non_blank(counterparty_iban, extract_iban(description), extract_iban(merchant))
        if self._is_internal_transfer(db, user_id, detected_iban):
            return CategoryResult("Transfer", CategorySource.RULE, 0.92, "Eigen rekening")

        if transaction_type is not None and transaction_type.strip().upper() == "TRANSFER":
            return CategoryResult("Transfer", CategorySource.RULE, 0.9, "Type TRANSFER")

        if self._is_crypto_transfer(description, merchant):
            return CategoryResult("Crypto", CategorySource.RULE, 0.85, "Crypto exchange")

        if direction == TransactionDirection.IN:
            return CategoryResult("Inkomen", CategorySource.RULE, 0.9, "Inkomende transactie")

        override = OverrideStore(db).find_override(user_id, merchant, description, counterparty_iban)
        if override is not None:
            return CategoryResult(override.category, CategorySource.OVERRIDE, 0.98, "Gebruikersregel")

        combined = self.rule_engine.combine(description, merchant, counterparty_iban)
        match = self.rule_engine.match(combined)
        if match.category != OTHER_CATEGORY:
            return CategoryResult(match.category, CategorySource.RULE, 0.7, match.reason)

        if allow_ai and self.ai_classifier is not None and self.ai_classifier.is_available():
            categories = allowed_categories(db, user_id)
            category = await self.ai_classifier.classify(
                self._system_prompt(categories),
                self._user_prompt(description, merchant, direction, transaction_type, currency, amount, counterparty_iban),
                categories
            )
            if category is not None:
                return CategoryResult(
                    category, CategorySource.AI, 0.72, "AI classificatie op basis van omschrijving", ai_attempted=True
                )
            return CategoryResult(match.category, CategorySource.RULE, 0.4, match.reason, ai_attempted=True)

        return CategoryResult(match.category, CategorySource.RULE, 0.4, match.reason)

    def _is_internal_transfer(self, db: Session, user_id: Optional[int], iban: Optional[str]) -> bool:
        if user_id is None:
            return False
        key = normalize(iban)
        if key is None:
            return False
        return key in self.identifier_cache.get(db, user_id)

    def _is_crypto_transfer(self, description: Optional[str], merchant: Optional[str]) -> bool:
        normalized = normalize(self.rule_engine.combine(description, merchant))
        if normalized is None:
            return False
        return any(keyword in normalized for keyword in CRYPTO_KEYWORDS)

    def _system_prompt(self, categories: List[str]) -> str:
        return (
            "You categorize financial transactions. "
            "Pick exactly one category from this list: " + ", ".join(categories) + ". "
            "Return only JSON like {\"category\":\"<one of the allowed categories>\"}."
        )

    def _user_prompt(
        self,
        description: Optional[str],
        merchant: Optional[str],
        direction: Optional[TransactionDirection],
        transaction_type: Optional[str],
        currency: Optional[str],
        amount: Optional[Union[Decimal, str]],
        counterparty_iban: Optional[str]
    ) -> str:
        amount_text = ""
        if amount is not None:
            amount_text = format(amount, 'f') if isinstance(amount, Decimal) else str(amount)
        return (
            f"Description: {description or ''}\n"
            f"Merchant: {merchant or ''}\n"
            f"Counterparty IBAN: {counterparty_iban or ''}\n"
            f"Direction: {direction.value if direction is not None else ''}\n"
            f"Type: {transaction_type or ''}\n"
            f"Amount: {amount_text}\n"
            f"Currency: {currency or ''}"
        )
