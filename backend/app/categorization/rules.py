"""
Keyword rule engine

Scans free text against a fixed, ordered table of category keywords. The first
keyword hit wins; no hit falls back to the "Overig" (other) category.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

OTHER_CATEGORY = "Overig"
NO_MATCH_REASON = "Geen match"

# Order matters: earlier categories win when several keywords occur in one text.
KEYWORD_RULES: Dict[str, List[str]] = {
    "Boodschappen": ["carrefour", "colruyt", "delhaize", "aldi", "lidl", "spar", "ah", "albert heijn",
                     "okay", "bioplanet", "supermarket"],
    "Horeca": ["restaurant", "cafe", "bar", "starbucks", "takeaway", "uber eats", "ubereats", "deliveroo",
               "snackbar", "pizza"],
    "Transport": ["sncb", "nmbs", "uber", "bolt", "taxi", "shell", "total", "q8", "parking", "train", "tram", "bus"],
    "Shopping": ["amazon", "bol.com", "coolblue", "zalando", "ikea", "mediamarkt", "decathlon"],
    "Abonnementen": ["netflix", "spotify", "hbo", "prime", "disney", "apple.com/bill", "google", "icloud"],
    "Utilities": ["engie", "luminus", "proximus", "telenet", "orange", "water", "energie"],
    "Huur/Hypotheek": ["huur", "rent", "hypotheek", "mortgage"],
    "Gezondheid": ["apotheek", "pharmacy", "dokter", "ziekenhuis", "hospital", "kliniek"],
    "Onderwijs": ["school", "university", "opleiding", "course", "college"],
    "Cash": ["atm", "geldautomaat", "cash withdrawal"],
}

@dataclass(frozen=True)
class RuleMatch:
    category: str
    reason: str


class CategoryRuleEngine:
    """Stateless keyword matcher; safe to share between tasks and threads."""

    def __init__(self, rules: Optional[Dict[str, List[str]]] = None):
        table = rules if rules is not None else KEYWORD_RULES
        self._rules: List[Tuple[str, List[str]]] = [
            (category, [kw.lower() for kw in keywords])
            for category, keywords in table.items()
        ]

    @property
    def categories(self) -> List[str]:
        return [category for category, _ in self._rules]

    def match(self, text: Optional[str]) -> RuleMatch:
        """
        Return the first category whose keyword occurs in text.

        Args:
            text: Free text, typically merchant + description + counterparty IBAN

        Returns:
            RuleMatch with reason "Match op '<keyword>'", or the "Overig"
            fallback with reason "Geen match"
        """
        normalized = (text or "").lower()
        if normalized:
            for category, keywords in self._rules:
                for keyword in keywords:
                    if keyword in normalized:
                        return RuleMatch(category, f"Match op '{keyword}'")
        return RuleMatch(OTHER_CATEGORY, NO_MATCH_REASON)

    @staticmethod
    def combine(description: Optional[str], merchant: Optional[str], counterparty_iban: Optional[str] = None) -> str:
        """Join merchant, description and IBAN into the text the keyword table is scanned against."""
        parts = [value.strip() for value in (merchant, description, counterparty_iban) if value and value.strip()]
        return " ".join(parts)
