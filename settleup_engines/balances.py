"""
Module: settleup_engines.balances
Responsibility:
    Fold a set of expenses and settlements into one net balance per member.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Purity: the balance is recomputed from the full record set on every
      call; nothing is patched incrementally, so edits and deletes can
      never leave drift behind. Identical inputs give identical output.
    - Integer arithmetic: balances are summed in minor units, so rounding
      every balance to the cent is exact.
    - Zero-sum: a non-zero total beyond the tolerance is reported as a
      BalanceIntegrityWarning, never hidden and never fatal.

Failure modes:
    - None raised for bad records: an unparsable record, or one in another
      currency, is skipped with an UnparsableRecordWarning.

Usage:
    from settleup_engines.balances import aggregate_balances

    balance = aggregate_balances(expenses, settlements, currency="USD")
    balance.of("alice")   # Money
    balance.issues        # warnings raised while aggregating
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from settleup_engines.tracer import traced_engine
from settleup_kernel.domain.parsing import parse_expense, parse_settlement
from settleup_kernel.domain.records import Balance, ExpenseRecord, SettlementRecord
from settleup_kernel.domain.values import Currency, Money, sum_money
from settleup_kernel.exceptions import (
    BalanceIntegrityWarning,
    RecordParseError,
    SettleUpWarning,
    UnparsableRecordWarning,
)
from settleup_kernel.logging_config import get_logger

logger = get_logger("engines.balances")

ExpenseInput = ExpenseRecord | Mapping[str, Any]
SettlementInput = SettlementRecord | Mapping[str, Any]


@dataclass(frozen=True)
class BalanceAggregator:
    """
    Aggregate expenses and completed settlements into member balances.

    Contract:
        Stateless with respect to its inputs. Expenses credit the payer
        with the full amount and debit every participant with their share.
        Completed settlements credit ``from_member`` and debit
        ``to_member`` (the debt has been paid down). Pending and cancelled
        settlements, and soft-deleted expenses, are ignored.
    Guarantees:
        - Every balance is in ``currency``.
        - Malformed records never abort the computation.
    Non-goals:
        - No currency conversion: records in another currency are skipped.
    """

    currency: Currency
    tolerance_minor_units: int = 1

    @traced_engine("balances", "1.0")
    def aggregate(
        self,
        expenses: Iterable[ExpenseInput],
        settlements: Iterable[SettlementInput] = (),
    ) -> Balance:
        totals: dict[str, int] = {}
        issues: list[SettleUpWarning] = []
        expense_count = 0
        settlement_count = 0

        for raw in expenses:
            expense = self._coerce(raw, "expense", issues)
            if expense is None or expense.is_deleted:
                continue
            expense_count += 1
            totals[expense.payer] = totals.get(expense.payer, 0) + expense.amount.minor
            for member, share in expense.split.items():
                totals[member] = totals.get(member, 0) - share.minor

        for raw in settlements:
            settlement = self._coerce(raw, "settlement", issues)
            if settlement is None or not settlement.is_completed:
                continue
            settlement_count += 1
            minor = settlement.amount.minor
            totals[settlement.from_member] = totals.get(settlement.from_member, 0) + minor
            totals[settlement.to_member] = totals.get(settlement.to_member, 0) - minor

        amounts = {
            member: Money.from_minor(minor, self.currency)
            for member, minor in totals.items()
        }
        imbalance = sum(totals.values())
        if abs(imbalance) > self.tolerance_minor_units:
            warning = BalanceIntegrityWarning(
                imbalance=str(Money.from_minor(imbalance, self.currency).amount),
                currency=self.currency.code,
                member_count=len(totals),
            )
            issues.append(warning)
            logger.warning("balance_integrity_violation", extra={
                "imbalance": warning.imbalance,
                "currency": warning.currency,
                "member_count": warning.member_count,
                "warning_code": warning.code,
            })

        logger.info("balances_aggregated", extra={
            "expense_count": expense_count,
            "settlement_count": settlement_count,
            "member_count": len(amounts),
            "skipped_count": sum(
                1 for issue in issues if isinstance(issue, UnparsableRecordWarning)
            ),
        })
        return Balance(currency=self.currency, amounts=amounts, issues=tuple(issues))

    def _coerce(
        self,
        raw: Any,
        kind: str,
        issues: list[SettleUpWarning],
    ) -> Any:
        """Parse a store document or check a typed record; None means skip."""
        record_type = ExpenseRecord if kind == "expense" else SettlementRecord
        if isinstance(raw, record_type):
            record = raw
        else:
            parser = parse_expense if kind == "expense" else parse_settlement
            try:
                record = parser(raw, self.currency)
            except RecordParseError as e:
                self._skip(issues, kind, e.record_id, str(e))
                return None

        if record.amount.currency != self.currency:
            record_id = (
                record.expense_id if kind == "expense" else record.settlement_id
            )
            self._skip(
                issues,
                kind,
                record_id,
                f"currency {record.amount.currency} differs from {self.currency}",
            )
            return None
        return record

    @staticmethod
    def _skip(
        issues: list[SettleUpWarning], kind: str, record_id: str | None, problem: str
    ) -> None:
        warning = UnparsableRecordWarning(kind, record_id, problem)
        issues.append(warning)
        logger.warning("record_skipped", extra={
            "record_kind": kind,
            "record_id": record_id,
            "problem": problem,
            "warning_code": warning.code,
        })


def aggregate_balances(
    expenses: Iterable[ExpenseInput],
    settlements: Iterable[SettlementInput] = (),
    *,
    currency: Currency | str = "USD",
    tolerance_minor_units: int = 1,
) -> Balance:
    """Net balance per member for the given records (see BalanceAggregator)."""
    if isinstance(currency, str):
        currency = Currency(currency)
    aggregator = BalanceAggregator(
        currency=currency, tolerance_minor_units=tolerance_minor_units
    )
    return aggregator.aggregate(expenses=expenses, settlements=settlements)


def member_balance(balance: Balance, member: str) -> Money:
    """Net balance of one member (zero when the member has no records)."""
    return balance.of(member)


def expenses_involving(
    member: str, expenses: Iterable[ExpenseRecord]
) -> list[ExpenseRecord]:
    """Expenses the member paid for or takes part in."""
    return [expense for expense in expenses if expense.involves(member)]


def total_expense_amount(
    expenses: Iterable[ExpenseRecord], currency: Currency | str
) -> Money:
    """Sum of live (not soft-deleted) expense amounts."""
    return sum_money(
        (expense.amount for expense in expenses if not expense.is_deleted), currency
    )
