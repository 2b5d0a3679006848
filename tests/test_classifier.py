"""Tests for account/class classification."""

from decimal import Decimal

import pytest

from job_costs.classifier import (
    CLASSIFICATION_RULES,
    ClassificationTables,
    build_tables,
    classify,
    match_name,
    match_transaction,
)
from job_costs.models import AccountType, EntityType
from qbo_api.normalize import parse_transaction
from tests.conftest import account, expense_line, qb_class, txn


class TestMatchName:
    """Substring pattern matching against the ordered rule table."""

    @pytest.mark.parametrize("name,expected", [
        ("Job Materials - Lumber", AccountType.JOB_MATERIALS),
        ("COST OF MATERIALS", AccountType.JOB_MATERIALS),
        ("Subcontractor Expense", AccountType.SUBCONTRACTOR_EXPENSE),
        ("1099 Contract Labor", AccountType.SUBCONTRACTOR_EXPENSE),
        ("Utilities:Temp Power", AccountType.UTILITIES),
        ("Dumpster Rental", AccountType.DISPOSAL_FEES),
        ("Landfill / Disposal Fees", AccountType.DISPOSAL_FEES),
        ("Fuel Expense", AccountType.FUEL_EXPENSE),
        ("Diesel", AccountType.FUEL_EXPENSE),
    ])
    def test_known_names(self, name, expected):
        assert match_name(name) is expected

    def test_unmatched_and_empty(self):
        assert match_name("Office Supplies") is None
        assert match_name("") is None
        assert match_name(None) is None

    def test_rule_order_decides_overlaps(self):
        """A name hitting two lists resolves to the earlier rule."""
        assert match_name("Materials for subcontractor") is AccountType.JOB_MATERIALS

    def test_every_account_type_has_rules(self):
        assert {t for t, _ in CLASSIFICATION_RULES} == set(AccountType)
        for _, patterns in CLASSIFICATION_RULES:
            assert all(p == p.lower() for p in patterns)


class TestBuildTables:

    def test_builds_id_tables(self):
        tables = build_tables(
            [account("A1", "Job Materials - Lumber"), account("A2", "Office Rent"), account("A3", "Subcontractors")],
            [qb_class("C1", "Fuel"), qb_class("C2", "Overhead")],
        )

        assert tables.accounts == {
            "A1": AccountType.JOB_MATERIALS,
            "A3": AccountType.SUBCONTRACTOR_EXPENSE,
        }
        assert tables.categories == {"C1": AccountType.FUEL_EXPENSE}
        assert not tables.is_empty

    def test_empty_when_nothing_matches(self):
        tables = build_tables([account("A2", "Office Rent")], [qb_class("C2", "Overhead")])
        assert tables.is_empty


class TestClassifyPrecedence:
    """id match > category id > category name > account name."""

    TABLES = ClassificationTables(
        accounts={"A1": AccountType.JOB_MATERIALS},
        categories={"C9": AccountType.DISPOSAL_FEES},
    )

    def test_account_id_wins(self):
        result = classify(self.TABLES, account_id="A1", category_id="C9", category_name="Fuel")
        assert result is AccountType.JOB_MATERIALS

    def test_category_id_before_names(self):
        result = classify(self.TABLES, account_id="A77", category_id="C9", category_name="Fuel")
        assert result is AccountType.DISPOSAL_FEES

    def test_category_name_before_account_name(self):
        result = classify(self.TABLES, account_name="Subcontractor Expense", category_name="Utilities")
        assert result is AccountType.UTILITIES

    def test_account_name_last(self):
        result = classify(self.TABLES, account_id="A77", account_name="Subcontractor Expense")
        assert result is AccountType.SUBCONTRACTOR_EXPENSE

    def test_no_match(self):
        assert classify(self.TABLES, account_id="A77", account_name="Rent") is None


class TestMatchTransaction:
    """Coarse whole-transaction match used in per-entity summaries."""

    TABLES = ClassificationTables(accounts={"A1": AccountType.JOB_MATERIALS})

    def test_header_class_sums_all_lines(self):
        record = txn("10", "2024-03-01", [
            expense_line(100.0, account_ref=("A1", "Job Materials")),
            expense_line(50.0, account_ref=("A5", "Rent")),
        ], ClassRef={"value": "C4", "name": "Utilities"})

        match = match_transaction(parse_transaction(EntityType.BILL, record), self.TABLES)

        assert match.account_type is AccountType.UTILITIES
        assert match.amount == Decimal("150.0")
        assert match.via_header

    def test_line_level_ignores_account_name_patterns(self):
        record = txn("11", "2024-03-01", [
            expense_line(100.0, account_ref=("A1", "Job Materials")),
            expense_line(40.0, account_ref=("A8", "Fuel Expense")),
        ])

        match = match_transaction(parse_transaction(EntityType.BILL, record), self.TABLES)

        assert match.account_type is AccountType.JOB_MATERIALS
        assert match.amount == Decimal("100.0")
        assert not match.via_header
