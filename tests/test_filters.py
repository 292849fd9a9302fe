"""
Tests for the expense filter engine.

The engine is pure, so most of these run without any store.
"""

import pytest
from datetime import date
from decimal import Decimal
from itertools import combinations
from uuid import uuid4

from expense_ledger.models.ledger import Expense
from expense_ledger.models.predicate import (
    AmountRange,
    CategoryIs,
    CurrencyIs,
    DateRange,
    ExpensePredicate,
    HasTag,
    TextSearch,
)
from expense_ledger.models.search import ExpenseSearchCriteria, Page
from expense_ledger.queries.filters import FilterEngine, build_predicate, matches

from conftest import add_category, add_random_expenses


USER = uuid4()
CATEGORY = uuid4()


def _expense(**overrides) -> Expense:
    fields = dict(
        user_id=USER,
        category_id=CATEGORY,
        amount=Decimal("25.00"),
        currency="USD",
        date=date(2025, 6, 15),
        description="Team lunch at Luigi's",
        tags={"Work", "food"},
    )
    fields.update(overrides)
    return Expense(**fields)


class TestBuildPredicate:
    """Tests for composing predicates from sparse criteria."""

    def test_empty_criteria_is_unrestricted(self):
        predicate = build_predicate(USER, ExpenseSearchCriteria())
        assert predicate.is_unrestricted
        assert predicate.criteria == ()

    def test_only_supplied_criteria_appear(self):
        predicate = build_predicate(
            USER,
            ExpenseSearchCriteria(min_amount=Decimal("5"), currency="eur"),
        )
        assert predicate.kinds == ("amount_range", "currency")
        assert predicate.criteria[0] == AmountRange(minimum=Decimal("5"))
        assert predicate.criteria[1] == CurrencyIs(code="EUR")

    def test_blank_strings_are_absent(self):
        """Whitespace-only text, currency or tag never restricts."""
        predicate = build_predicate(
            USER,
            ExpenseSearchCriteria(search_text="   ", currency=" ", tag=""),
        )
        assert predicate.is_unrestricted

    def test_text_and_tag_are_lowercased(self):
        predicate = build_predicate(
            USER, ExpenseSearchCriteria(search_text="LUNCH", tag="Work")
        )
        assert TextSearch(needle="lunch") in predicate.criteria
        assert HasTag(tag="work") in predicate.criteria

    def test_equal_inputs_give_equal_predicates(self):
        """Predicates are values: composing twice yields the same thing."""
        criteria = ExpenseSearchCriteria(
            date_from=date(2025, 1, 1),
            category_id=CATEGORY,
            search_text="taxi",
        )
        assert build_predicate(USER, criteria) == build_predicate(USER, criteria)

    def test_single_date_bound(self):
        predicate = build_predicate(USER, ExpenseSearchCriteria(date_to=date(2025, 2, 1)))
        assert predicate.criteria == (DateRange(end=date(2025, 2, 1)),)

    def test_does_not_validate_ranges(self):
        """Range checks belong to the caller boundary, not to the engine."""
        predicate = build_predicate(
            USER,
            ExpenseSearchCriteria(min_amount=Decimal("10"), max_amount=Decimal("1")),
        )
        assert predicate.kinds == ("amount_range",)


class TestMatches:
    """Tests for the single matcher function."""

    def test_unrestricted_matches_own_expense_only(self):
        predicate = ExpensePredicate(user_id=USER)
        assert matches(predicate, _expense())
        assert not matches(predicate, _expense(user_id=uuid4()))

    def test_date_range_is_inclusive(self):
        predicate = ExpensePredicate(
            user_id=USER,
            criteria=(DateRange(start=date(2025, 6, 15), end=date(2025, 6, 15)),),
        )
        assert matches(predicate, _expense())
        assert not matches(predicate, _expense(date=date(2025, 6, 16)))
        assert not matches(predicate, _expense(date=date(2025, 6, 14)))

    def test_amount_range_is_inclusive(self):
        predicate = ExpensePredicate(
            user_id=USER,
            criteria=(AmountRange(minimum=Decimal("25.00"), maximum=Decimal("30")),),
        )
        assert matches(predicate, _expense())
        assert matches(predicate, _expense(amount=Decimal("30.00")))
        assert not matches(predicate, _expense(amount=Decimal("30.01")))
        assert not matches(predicate, _expense(amount=Decimal("24.99")))

    def test_category(self):
        predicate = ExpensePredicate(user_id=USER, criteria=(CategoryIs(category_id=CATEGORY),))
        assert matches(predicate, _expense())
        assert not matches(predicate, _expense(category_id=uuid4()))

    @pytest.mark.parametrize("needle,category_name,expected", [
        ("luigi", None, True),          # description
        ("wor", None, True),            # tag substring, case-insensitive
        ("dining", "Dining Out", True),  # category name
        ("dining", None, False),
        ("sushi", "Dining Out", False),
    ])
    def test_text_search_spans_description_tags_and_category(
        self, needle, category_name, expected
    ):
        predicate = ExpensePredicate(user_id=USER, criteria=(TextSearch(needle=needle),))
        assert matches(predicate, _expense(), category_name) is expected

    def test_text_search_without_description(self):
        predicate = ExpensePredicate(user_id=USER, criteria=(TextSearch(needle="food"),))
        assert matches(predicate, _expense(description=None))

    def test_tag_is_exact_membership(self):
        predicate = ExpensePredicate(user_id=USER, criteria=(HasTag(tag="work"),))
        assert matches(predicate, _expense())
        assert not matches(
            ExpensePredicate(user_id=USER, criteria=(HasTag(tag="wor"),)),
            _expense(),
        )

    def test_currency(self):
        predicate = ExpensePredicate(user_id=USER, criteria=(CurrencyIs(code="USD"),))
        assert matches(predicate, _expense())
        assert not matches(predicate, _expense(currency="EUR"))

    def test_criteria_combine_with_and(self):
        predicate = build_predicate(
            USER,
            ExpenseSearchCriteria(currency="USD", min_amount=Decimal("100")),
        )
        assert not matches(predicate, _expense())
        assert matches(predicate, _expense(amount=Decimal("150.00")))

    def test_facade_delegates(self):
        engine = FilterEngine()
        predicate = engine.compose(USER, ExpenseSearchCriteria(tag="food"))
        assert engine.matches(predicate, _expense())


class TestFilterIdentity:
    """Applying no criteria returns every expense of the user."""

    async def test_no_criteria_returns_everything(self, ledger, alice, bob, rng):
        categories = [
            await add_category(ledger, alice, "Food"),
            await add_category(ledger, alice, "Travel"),
        ]
        mine = await add_random_expenses(ledger, alice, categories, rng, 30)
        other = await add_category(ledger, bob, "Food")
        await add_random_expenses(ledger, bob, [other], rng, 5)

        result = await ledger.query_expenses(
            alice.id, build_predicate(alice.id, ExpenseSearchCriteria()), Page(size=500)
        )

        assert result.total == 30
        assert {e.id for e in result.items} == {e.id for e in mine}

    async def test_every_criteria_subset_narrows(self, ledger, alice, rng):
        """Adding criteria can only remove matches, never add them."""
        categories = [
            await add_category(ledger, alice, "Food"),
            await add_category(ledger, alice, "Travel"),
        ]
        await add_random_expenses(ledger, alice, categories, rng, 40)

        supplied = {
            "date_from": date(2025, 3, 1),
            "category_id": categories[0].id,
            "min_amount": Decimal("50"),
            "currency": "EUR",
            "tag": "work",
        }
        everything = await ledger.query_expenses(
            alice.id, build_predicate(alice.id, ExpenseSearchCriteria()), Page(size=500)
        )
        for size in range(1, len(supplied) + 1):
            for keys in combinations(supplied, size):
                criteria = ExpenseSearchCriteria(**{k: supplied[k] for k in keys})
                predicate = build_predicate(alice.id, criteria)
                found = await ledger.query_expenses(alice.id, predicate, Page(size=500))
                expected = [e for e in everything.items if matches(predicate, e)]
                assert {e.id for e in found.items} == {e.id for e in expected}
                assert found.total <= everything.total


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
