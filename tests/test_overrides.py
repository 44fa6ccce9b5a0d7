import pytest

from backend.app.categorization.overrides import (
    OverrideStore,
    normalize,
    parse_match_mode,
    parse_match_type,
)
from backend.app.models import CategoryMatchMode, CategoryMatchType, CategoryOverride


def test_normalize_strips_punctuation_and_case() -> None:
    assert normalize("  ALBERT-HEIJN 1234 ") == "albertheijn1234"
    assert normalize("NL91 ABNA 0417 1643 00") == "nl91abna0417164300"


def test_normalize_empty_values() -> None:
    assert normalize(None) is None
    assert normalize("") is None
    assert normalize(" -- ") is None


def test_parse_match_type() -> None:
    assert parse_match_type(" merchant ") == CategoryMatchType.MERCHANT
    with pytest.raises(ValueError):
        parse_match_type("account")
    with pytest.raises(ValueError):
        parse_match_type(None)


def test_parse_match_mode_defaults_to_contains() -> None:
    assert parse_match_mode(None) == CategoryMatchMode.CONTAINS
    assert parse_match_mode("exact") == CategoryMatchMode.EXACT
    with pytest.raises(ValueError):
        parse_match_mode("fuzzy")


class TestOverrideStoreRules:

    def test_create_iban_rule_forces_exact(self, db, user):
        rule = OverrideStore(db).create_rule(
            user.id, "iban", "NL91 ABNA 0417 1643 00", " Huur/Hypotheek ", match_mode="contains"
        )
        assert rule.match_mode == CategoryMatchMode.EXACT
        assert rule.match_value == "nl91abna0417164300"
        assert rule.category == "Huur/Hypotheek"

    @pytest.mark.parametrize("match_type,match_value,category", [
        ("merchant", "--", "Shopping"),
        ("merchant", "Bol.com", "  "),
        ("account", "Bol.com", "Shopping"),
    ])
    def test_create_rule_rejects_invalid_input(self, db, user, match_type, match_value, category):
        with pytest.raises(ValueError):
            OverrideStore(db).create_rule(user.id, match_type, match_value, category)
        assert db.query(CategoryOverride).count() == 0

    def test_update_rule_to_iban_forces_exact(self, db, user):
        store = OverrideStore(db)
        rule = store.create_rule(user.id, "merchant", "Landlord", "Huur/Hypotheek")
        assert rule.match_mode == CategoryMatchMode.CONTAINS

        updated = store.update_rule(rule, match_type="IBAN", match_value="NL91ABNA0417164300")

        assert updated.match_type == CategoryMatchType.IBAN
        assert updated.match_mode == CategoryMatchMode.EXACT
        assert updated.category == "Huur/Hypotheek"

    def test_list_and_get_are_scoped_to_user(self, db, user, other_user):
        store = OverrideStore(db)
        mine = store.create_rule(user.id, "merchant", "Lidl", "Boodschappen")
        store.create_rule(other_user.id, "merchant", "Aldi", "Boodschappen")

        assert [rule.id for rule in store.list_rules(user.id)] == [mine.id]
        assert store.get_rule(other_user.id, mine.id) is None

    def test_delete_rule(self, db, user):
        store = OverrideStore(db)
        rule = store.create_rule(user.id, "description", "Gym", "Gezondheid")
        store.delete_rule(rule)
        assert store.list_rules(user.id) == []


class TestFindOverride:

    def test_iban_rule_beats_merchant_rule(self, db, user):
        store = OverrideStore(db)
        store.create_rule(user.id, "merchant", "Albert", "Boodschappen")
        iban_rule = store.create_rule(user.id, "iban", "NL91ABNA0417164300", "Huur/Hypotheek")

        found = store.find_override(user.id, "Albert Heijn", None, "nl91 abna 0417 1643 00")

        assert found.id == iban_rule.id

    def test_longer_contains_value_wins(self, db, user):
        store = OverrideStore(db)
        store.create_rule(user.id, "merchant", "Albert", "Boodschappen")
        longer = store.create_rule(user.id, "merchant", "Albert Heijn", "Horeca")

        assert store.find_override(user.id, "ALBERT HEIJN 1234", None, None).id == longer.id

    def test_exact_beats_contains_of_same_length(self, db, user):
        store = OverrideStore(db)
        store.create_rule(user.id, "merchant", "Albert Heijn 1234", "Horeca")
        exact = store.create_rule(user.id, "merchant", "Albert Heijn 1234", "Boodschappen", match_mode="EXACT")

        assert store.find_override(user.id, "Albert Heijn 1234", None, None).id == exact.id

    def test_exact_rule_requires_full_value(self, db, user):
        store = OverrideStore(db)
        store.create_rule(user.id, "merchant", "Albert Heijn", "Boodschappen", match_mode="EXACT")

        assert store.find_override(user.id, "Albert Heijn 1234", None, None) is None

    def test_merchant_rule_beats_description_rule(self, db, user):
        store = OverrideStore(db)
        store.create_rule(user.id, "description", "groceries", "Boodschappen")
        merchant_rule = store.create_rule(user.id, "merchant", "Corner shop", "Shopping")

        found = store.find_override(user.id, "Corner Shop", "weekly groceries", None)

        assert found.id == merchant_rule.id

    def test_description_rule_used_without_merchant_hit(self, db, user):
        store = OverrideStore(db)
        rule = store.create_rule(user.id, "description", "gym membership", "Gezondheid")

        assert store.find_override(user.id, None, "Monthly GYM-membership", None).id == rule.id

    def test_other_users_rules_ignored(self, db, user, other_user):
        OverrideStore(db).create_rule(other_user.id, "merchant", "Lidl", "Horeca")

        assert OverrideStore(db).find_override(user.id, "Lidl", None, None) is None
        assert OverrideStore(db).find_override(None, "Lidl", None, None) is None


class TestUpsertForTransaction:

    def test_iban_takes_precedence(self, db, user, account_factory, transaction_factory):
        account = account_factory(user)
        tx = transaction_factory(
            account, counterparty_iban="NL91ABNA0417164300", merchant_name="Landlord BV", description="Rent"
        )

        rule = OverrideStore(db).upsert_for_transaction(user.id, tx, "Huur/Hypotheek")
        db.commit()

        assert rule.match_type == CategoryMatchType.IBAN
        assert rule.match_mode == CategoryMatchMode.EXACT
        assert rule.match_value == "nl91abna0417164300"

    def test_existing_rule_is_updated_in_place(self, db, user, account_factory, transaction_factory):
        account = account_factory(user)
        tx = transaction_factory(account, merchant_name="Coolblue")
        store = OverrideStore(db)

        first = store.upsert_for_transaction(user.id, tx, "Shopping")
        db.commit()
        second = store.upsert_for_transaction(user.id, tx, "Utilities")
        db.commit()

        assert first.id == second.id
        assert second.match_type == CategoryMatchType.MERCHANT
        assert second.match_mode == CategoryMatchMode.CONTAINS
        assert second.category == "Utilities"
        assert db.query(CategoryOverride).count() == 1

    def test_description_fallback(self, db, user, account_factory, transaction_factory):
        account = account_factory(user)
        tx = transaction_factory(account, description="Sportschool maart")

        rule = OverrideStore(db).upsert_for_transaction(user.id, tx, "Gezondheid")

        assert rule.match_type == CategoryMatchType.DESCRIPTION
        assert rule.match_value == "sportschoolmaart"

    def test_nothing_to_match_on(self, db, user, account_factory, transaction_factory):
        account = account_factory(user)
        tx = transaction_factory(account)

        assert OverrideStore(db).upsert_for_transaction(user.id, tx, "Overig") is None
