import pytest

from backend.app.categorization.rules import CategoryRuleEngine, OTHER_CATEGORY, NO_MATCH_REASON


engine = CategoryRuleEngine()


def test_match_groceries_multiword_keyword() -> None:
    match = engine.match("ALBERT HEIJN 1234 AMSTERDAM")
    assert match.category == "Boodschappen"
    assert match.reason == "Match op 'albert heijn'"


def test_match_short_keyword_as_whole_word() -> None:
    assert engine.match("AH to go Centraal").category == "Boodschappen"


@pytest.mark.parametrize("text,category,keyword", [
    ("barbershop utrecht", "Horeca", "bar"),
    ("busabonnement de lijn", "Transport", "bus"),
    ("atm0123 brussel", "Cash", "atm"),
    ("Bahnhof kiosk", "Boodschappen", "ah"),
])
def test_short_keyword_matches_inside_word(text, category, keyword) -> None:
    match = engine.match(text)
    assert match.category == category
    assert match.reason == f"Match op '{keyword}'"


def test_no_keyword_falls_back_to_other() -> None:
    match = engine.match("Kadobon 5521")
    assert match.category == OTHER_CATEGORY
    assert match.reason == NO_MATCH_REASON


def test_earlier_category_wins() -> None:
    assert engine.match("Starbucks at Carrefour").category == "Boodschappen"


def test_uber_eats_is_dining_not_transport() -> None:
    assert engine.match("Uber Eats order").category == "Horeca"


def test_match_subscription() -> None:
    assert engine.match("NETFLIX.COM").category == "Abonnementen"


def test_match_fuel_station_to_transport() -> None:
    assert engine.match("Shell station").category == "Transport"


def test_match_empty() -> None:
    assert engine.match("").category == OTHER_CATEGORY
    assert engine.match(None).category == OTHER_CATEGORY


def test_custom_rule_table() -> None:
    custom = CategoryRuleEngine({"Hobby": ["modelbouw", "lego"]})
    assert custom.categories == ["Hobby"]
    assert custom.match("Intertoys LEGO").category == "Hobby"
    assert custom.match("Carrefour").category == OTHER_CATEGORY


def test_default_categories_exclude_fallback() -> None:
    assert engine.categories[0] == "Boodschappen"
    assert OTHER_CATEGORY not in engine.categories


def test_combine_orders_merchant_description_iban() -> None:
    assert CategoryRuleEngine.combine("Card payment", "Lidl", "BE71096123456769") == "Lidl Card payment BE71096123456769"


def test_combine_skips_blank_parts() -> None:
    assert CategoryRuleEngine.combine("  ", None, None) == ""
    assert CategoryRuleEngine.combine("Rent May", " ", None) == "Rent May"
