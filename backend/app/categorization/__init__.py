"""
Transaction categorization

Ordered decision pipeline that assigns a category to each imported transaction:
built-in detectors, user overrides, keyword rules and an optional AI fallback.
"""

from .rules import CategoryRuleEngine, RuleMatch, OTHER_CATEGORY
from .overrides import OverrideStore, normalize
from .cascade import CategorizationCascade, CategoryResult, AccountIdentifierCache, DEFAULT_CATEGORIES

__all__ = [
    'CategoryRuleEngine',
    'RuleMatch',
    'OTHER_CATEGORY',
    'OverrideStore',
    'normalize',
    'CategorizationCascade',
    'CategoryResult',
    'AccountIdentifierCache',
    'DEFAULT_CATEGORIES',
]
