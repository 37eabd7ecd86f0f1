"""
Tests for balance aggregation.

Covers:
- Payer credit / participant debit
- Completed vs pending settlements
- Soft-deleted expenses
- Skipped records and integrity warnings
"""

from decimal import Decimal

from settleup_engines.balances import (
    BalanceAggregator,
    aggregate_balances,
    expenses_involving,
    member_balance,
    total_expense_amount,
)
from settleup_kernel.domain.records import SettlementStatus
from settleup_kernel.domain.values import Currency
from settleup_kernel.exceptions import BalanceIntegrityWarning, UnparsableRecordWarning
from tests.conftest import amounts, make_expense, make_settlement, usd


def _dinner():
    return make_expense(
        "e1", "alice", "90.00", {"alice": "30.00", "bob": "30.00", "carol": "30.00"}
    )


class TestAggregation:
    def test_payer_credited_participants_debited(self):
        balance = aggregate_balances([_dinner()])

        assert amounts(balance) == {
            "alice": Decimal("60.00"),
            "bob": Decimal("-30.00"),
            "carol": Decimal("-30.00"),
        }
        assert balance.total.is_zero
        assert balance.issues == ()

    def test_two_expenses_net_out(self):
        lunch = make_expense("e2", "bob", "30.00", {"alice": "15.00", "bob": "15.00"})
        balance = aggregate_balances([_dinner(), lunch])

        assert balance.of("alice") == usd("45.00")
        assert balance.of("bob") == usd("-15.00")
        assert balance.of("carol") == usd("-30.00")

    def test_completed_settlement_pays_down_debt(self):
        paid = make_settlement("s1", "bob", "alice", "30.00")
        balance = aggregate_balances([_dinner()], [paid])

        assert balance.of("bob").is_zero
        assert balance.of("alice") == usd("30.00")

    def test_pending_and_cancelled_settlements_ignored(self):
        pending = make_settlement("s1", "bob", "alice", "30.00", SettlementStatus.PENDING)
        cancelled = make_settlement("s2", "carol", "alice", "30.00", SettlementStatus.CANCELLED)
        balance = aggregate_balances([_dinner()], [pending, cancelled])

        assert balance == aggregate_balances([_dinner()])

    def test_deleted_expense_ignored(self):
        deleted = make_expense("e2", "bob", "50.00", {"alice": "50.00"}, is_deleted=True)
        balance = aggregate_balances([_dinner(), deleted])

        assert balance == aggregate_balances([_dinner()])

    def test_empty_input(self):
        balance = aggregate_balances([])
        assert len(balance) == 0
        assert balance.is_settled

    def test_store_documents_accepted(self):
        doc = {
            "id": "e1",
            "payer": "alice",
            "amount": 20.0,
            "split": {"alice": 10.0, "bob": 10.0},
            "splitType": 0,
        }
        settlement_doc = {
            "id": "s1",
            "fromUser": "bob",
            "toUser": "alice",
            "amount": 10,
            "status": "completed",
        }
        balance = aggregate_balances([doc], [settlement_doc])

        assert balance.is_settled
        assert balance.issues == ()

    def test_recomputation_is_deterministic(self):
        expenses = [_dinner()]
        assert aggregate_balances(expenses) == aggregate_balances(expenses)


class TestSkippedRecords:
    def test_unparsable_expense_is_skipped(self, captured_logs):
        bad = {"id": "broken", "payer": None, "amount": 10, "split": {}}
        balance = aggregate_balances([_dinner(), bad])

        assert balance.of("alice") == usd("60.00")
        assert len(balance.issues) == 1
        issue = balance.issues[0]
        assert isinstance(issue, UnparsableRecordWarning)
        assert issue.record_kind == "expense"
        assert issue.record_id == "broken"

        skipped = [r for r in captured_logs() if r["message"] == "record_skipped"]
        assert skipped[0]["warning_code"] == "UNPARSABLE_RECORD"

    def test_unparsable_settlement_is_skipped(self):
        bad = {"id": "s9", "fromUser": "bob", "amount": "x", "toUser": "alice"}
        balance = aggregate_balances([_dinner()], [bad])

        assert balance.of("bob") == usd("-30.00")
        assert balance.issues[0].record_kind == "settlement"

    def test_foreign_currency_record_skipped(self):
        euro = {
            "id": "e2",
            "payer": "bob",
            "amount": "10.00",
            "split": {"alice": "10.00"},
            "currency": "EUR",
        }
        balance = aggregate_balances([_dinner(), euro])

        assert balance.of("bob") == usd("-30.00")
        assert "EUR" in balance.issues[0].problem

    def test_issues_do_not_stop_aggregation(self):
        balance = aggregate_balances([{"nonsense": True}, _dinner(), ["junk"]])
        assert len(balance.issues) == 2
        assert balance.of("carol") == usd("-30.00")


class TestIntegrity:
    def test_imbalanced_split_reported(self, captured_logs):
        lopsided = make_expense("e1", "alice", "90.00", {"alice": "30.00", "bob": "30.00"})
        balance = aggregate_balances([lopsided])

        warnings = [i for i in balance.issues if isinstance(i, BalanceIntegrityWarning)]
        assert len(warnings) == 1
        assert warnings[0].imbalance == "30.00"
        assert warnings[0].currency == "USD"
        assert warnings[0].member_count == 2
        assert any(r["message"] == "balance_integrity_violation" for r in captured_logs())

    def test_one_unit_drift_is_tolerated(self):
        drift = make_expense("e1", "alice", "10.00", {"alice": "5.00", "bob": "4.99"})
        balance = aggregate_balances([drift])
        assert balance.total == usd("0.01")
        assert balance.issues == ()

    def test_tolerance_is_configurable(self):
        drift = make_expense("e1", "alice", "10.00", {"alice": "5.00", "bob": "4.99"})
        aggregator = BalanceAggregator(currency=Currency("USD"), tolerance_minor_units=0)
        balance = aggregator.aggregate(expenses=[drift])
        assert isinstance(balance.issues[0], BalanceIntegrityWarning)


class TestHelpers:
    def test_member_balance(self):
        balance = aggregate_balances([_dinner()])
        assert member_balance(balance, "bob") == usd("-30.00")
        assert member_balance(balance, "dave").is_zero

    def test_expenses_involving(self):
        lunch = make_expense("e2", "bob", "30.00", {"bob": "30.00"})
        assert expenses_involving("carol", [_dinner(), lunch]) == [_dinner()]
        assert len(expenses_involving("bob", [_dinner(), lunch])) == 2

    def test_total_expense_amount_skips_deleted(self):
        deleted = make_expense("e2", "bob", "50.00", {"alice": "50.00"}, is_deleted=True)
        assert total_expense_amount([_dinner(), deleted], "USD") == usd("90.00")
