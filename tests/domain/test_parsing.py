"""Tests for parsing store documents into typed records."""

from decimal import Decimal

import pytest

from settleup_kernel.domain.parsing import (
    parse_decimal,
    parse_expense,
    parse_policy,
    parse_settlement,
    parse_status,
)
from settleup_kernel.domain.records import SettlementStatus, SplitPolicy
from settleup_kernel.domain.values import Money
from settleup_kernel.exceptions import RecordParseError


def _expense_doc(**overrides):
    doc = {
        "id": "e1",
        "payer": "alice",
        "amount": 90.0,
        "split": {"alice": 30.0, "bob": 30.0, "carol": 30.0},
        "splitType": 0,
        "groupId": "trip",
    }
    doc.update(overrides)
    return doc


class TestParseDecimal:
    def test_float_goes_through_str(self):
        assert parse_decimal(33.33) == Decimal("33.33")

    def test_string_and_int(self):
        assert parse_decimal(" 12.50 ") == Decimal("12.50")
        assert parse_decimal(5) == Decimal("5")

    @pytest.mark.parametrize("value", [True, "abc", None, "NaN", "Infinity", [1]])
    def test_rejects_non_amounts(self, value):
        with pytest.raises(ValueError):
            parse_decimal(value)


class TestParsePolicyAndStatus:
    def test_policy_by_index_matches_client_order(self):
        assert parse_policy(0) is SplitPolicy.EQUAL
        assert parse_policy(1) is SplitPolicy.PERCENTAGE
        assert parse_policy(3) is SplitPolicy.EXACT

    def test_policy_by_name(self):
        assert parse_policy("Shares") is SplitPolicy.SHARES

    def test_unknown_policy(self):
        with pytest.raises(ValueError):
            parse_policy(42)
        with pytest.raises(ValueError):
            parse_policy("lottery")

    def test_unknown_status_reads_as_pending(self):
        assert parse_status("completed") is SettlementStatus.COMPLETED
        assert parse_status("weird") is SettlementStatus.PENDING
        assert parse_status(None) is SettlementStatus.PENDING


class TestParseExpense:
    def test_camel_case_document(self):
        expense = parse_expense(_expense_doc(), "USD")
        assert expense.expense_id == "e1"
        assert expense.group_id == "trip"
        assert expense.amount == Money.of("90.00", "USD")
        assert expense.share_of("carol") == Money.of("30.00", "USD")
        assert expense.policy is SplitPolicy.EQUAL
        assert not expense.is_deleted

    def test_snake_case_document(self):
        doc = {
            "expense_id": "e2",
            "payer": "bob",
            "amount": "10.00",
            "split": {"bob": "10.00"},
            "policy": "exact",
            "group_id": "home",
            "is_deleted": True,
        }
        expense = parse_expense(doc, "USD")
        assert expense.expense_id == "e2"
        assert expense.policy is SplitPolicy.EXACT
        assert expense.is_deleted

    def test_weights_kept_for_audit(self):
        expense = parse_expense(
            _expense_doc(splitType=2, customRatios={"alice": 2, "bob": 1}), "USD"
        )
        assert expense.weights == {"alice": Decimal("2"), "bob": Decimal("1")}

    def test_missing_payer(self):
        with pytest.raises(RecordParseError) as exc_info:
            parse_expense(_expense_doc(payer=None), "USD")
        assert exc_info.value.field == "payer"
        assert exc_info.value.record_id == "e1"

    def test_bad_share_names_member(self):
        with pytest.raises(RecordParseError) as exc_info:
            parse_expense(_expense_doc(split={"alice": "lots"}), "USD")
        assert exc_info.value.field == "split.alice"

    def test_non_positive_amount(self):
        with pytest.raises(RecordParseError):
            parse_expense(_expense_doc(amount=0), "USD")

    def test_unknown_currency_override(self):
        with pytest.raises(RecordParseError) as exc_info:
            parse_expense(_expense_doc(currency="ZZZ"), "USD")
        assert exc_info.value.field == "currency"

    def test_not_a_mapping(self):
        with pytest.raises(RecordParseError):
            parse_expense(["e1"], "USD")


class TestParseSettlement:
    def test_store_document(self):
        settlement = parse_settlement(
            {
                "id": "s1",
                "fromUser": "bob",
                "toUser": "alice",
                "amount": 20,
                "status": "completed",
                "groupId": "trip",
                "relatedExpenseId": "e1",
            },
            "USD",
        )
        assert settlement.from_member == "bob"
        assert settlement.to_member == "alice"
        assert settlement.amount == Money.of("20.00", "USD")
        assert settlement.is_completed
        assert settlement.related_expense_id == "e1"

    def test_same_member_is_parse_error(self):
        with pytest.raises(RecordParseError):
            parse_settlement(
                {"id": "s1", "fromUser": "bob", "toUser": "bob", "amount": 5}, "USD"
            )

    def test_missing_to_user(self):
        with pytest.raises(RecordParseError) as exc_info:
            parse_settlement({"id": "s1", "fromUser": "bob", "amount": 5}, "USD")
        assert exc_info.value.field == "toUser"
