"""
Module: settleup_engines.settlement
Responsibility:
    Turn a balance map into a short list of point-to-point payments that
    closes every balance, and the small helpers around recorded settlements.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Algorithm (greedy, largest first):
    1. Creditors are members with balance > epsilon, debtors those with
       balance < -epsilon. Each side is sorted by descending magnitude,
       ties broken by member id.
    2. Two cursors walk the lists. Each step transfers
       ``min(creditor_remaining, debtor_remaining)`` from the debtor to the
       creditor and advances every cursor whose remainder fell to epsilon
       or below.
    3. Stop when either list is exhausted.

    This is a heuristic. It always zeroes a consistent balance map but does
    not promise the minimum number of transfers; which pairs settle is
    stable and users may rely on it.

Invariants enforced:
    - Every emitted transaction has a positive amount and distinct members.
    - Output depends only on the balance values, never on mapping order.

Usage:
    from settleup_engines.settlement import minimize_settlements

    transactions = minimize_settlements(balance)
    [t.as_dict() for t in transactions]
    # [{"from": "C", "to": "A", "amount": "30.00"}, ...]
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal

from settleup_engines.tracer import traced_engine
from settleup_kernel.domain.records import (
    Balance,
    SettlementRecord,
    SettlementStatus,
    SettlementTransaction,
)
from settleup_kernel.domain.values import Currency, Money
from settleup_kernel.exceptions import InvalidSettlementAmountError
from settleup_kernel.logging_config import get_logger

logger = get_logger("engines.settlement")

DEFAULT_MAX_SETTLEMENT_AMOUNT = Decimal("999999.99")


def _balance_currency(balance: Mapping[str, Money]) -> Currency | None:
    if isinstance(balance, Balance):
        return balance.currency
    for value in balance.values():
        return value.currency
    return None


@dataclass(frozen=True)
class SettlementMinimizer:
    """
    Greedy creditor/debtor matcher.

    Contract:
        ``minimize`` reads a mapping of member id to signed Money (a
        Balance or any equivalent mapping) and returns transactions.
    Guarantees:
        - Members within ``epsilon_minor_units`` of zero are left alone.
        - Applying the result to a zero-sum balance whose non-zero entries
          all exceed epsilon leaves every entry at zero.
    Non-goals:
        - Not an optimal (minimum transaction count) solver.
    """

    epsilon_minor_units: int = 1

    @traced_engine("settlement", "1.0", fingerprint_fields=("balance",))
    def minimize(self, balance: Mapping[str, Money]) -> list[SettlementTransaction]:
        currency = _balance_currency(balance)
        if currency is None:
            return []
        eps = self.epsilon_minor_units

        creditors = sorted(
            ((member, value.minor) for member, value in balance.items() if value.minor > eps),
            key=lambda item: (-item[1], item[0]),
        )
        debtors = sorted(
            ((member, -value.minor) for member, value in balance.items() if value.minor < -eps),
            key=lambda item: (-item[1], item[0]),
        )

        transactions: list[SettlementTransaction] = []
        ci = di = 0
        credit_left = creditors[0][1] if creditors else 0
        debt_left = debtors[0][1] if debtors else 0

        while ci < len(creditors) and di < len(debtors):
            transfer = min(credit_left, debt_left)
            if transfer > 0:
                transactions.append(
                    SettlementTransaction(
                        from_member=debtors[di][0],
                        to_member=creditors[ci][0],
                        amount=Money.from_minor(transfer, currency),
                    )
                )
            credit_left -= transfer
            debt_left -= transfer

            if credit_left <= eps:
                ci += 1
                if ci < len(creditors):
                    credit_left = creditors[ci][1]
            if debt_left <= eps:
                di += 1
                if di < len(debtors):
                    debt_left = debtors[di][1]

        logger.info("settlements_minimized", extra={
            "creditor_count": len(creditors),
            "debtor_count": len(debtors),
            "transaction_count": len(transactions),
            "currency": currency.code,
        })
        return transactions


def minimize_settlements(
    balance: Mapping[str, Money],
    *,
    epsilon_minor_units: int = 1,
) -> list[SettlementTransaction]:
    """Suggested transfers that close ``balance`` (see SettlementMinimizer)."""
    minimizer = SettlementMinimizer(epsilon_minor_units=epsilon_minor_units)
    return minimizer.minimize(balance=balance)


def apply_transactions(
    balance: Mapping[str, Money],
    transactions: Iterable[SettlementTransaction],
) -> Balance:
    """
    Balance left over once ``transactions`` are paid.

    A payment raises the payer's balance and lowers the payee's, the same
    way a completed settlement is aggregated.
    """
    currency = _balance_currency(balance)
    totals = {member: value.minor for member, value in balance.items()}
    for tx in transactions:
        if currency is None:
            currency = tx.amount.currency
        totals[tx.from_member] = totals.get(tx.from_member, 0) + tx.amount.minor
        totals[tx.to_member] = totals.get(tx.to_member, 0) - tx.amount.minor
    if currency is None:
        raise ValueError("cannot apply transactions to an empty balance without currency")
    return Balance(
        currency=currency,
        amounts={member: Money.from_minor(minor, currency) for member, minor in totals.items()},
    )


def validate_settlement_amount(
    amount: Money,
    max_amount: Money | None = None,
) -> Money:
    """
    Check a settlement amount entered by a user.

    Raises:
        InvalidSettlementAmountError: if the amount is not positive or is
            above ``max_amount`` (999999.99 in the amount currency by default).
    """
    if max_amount is None:
        max_amount = Money.of(DEFAULT_MAX_SETTLEMENT_AMOUNT, amount.currency)
    if not amount.is_positive or amount > max_amount:
        raise InvalidSettlementAmountError(
            amount=str(amount.amount), max_amount=str(max_amount.amount)
        )
    return amount


def cancel_settlements_for_expense(
    expense_id: str,
    settlements: Iterable[SettlementRecord],
    reason: str = "expense_deleted",
) -> list[SettlementRecord]:
    """
    Cancelled copies of the open settlements linked to a removed expense.

    Completed settlements are history and stay untouched, as do already
    cancelled ones. The caller writes the returned records back.
    """
    cancelled = [
        settlement.cancelled(reason)
        for settlement in settlements
        if settlement.related_expense_id == expense_id
        and settlement.status is SettlementStatus.PENDING
    ]
    if cancelled:
        logger.info("settlements_cancelled_for_expense", extra={
            "expense_id": expense_id,
            "cancelled_count": len(cancelled),
            "reason": reason,
        })
    return cancelled


def pending_settlement_total(
    member: str,
    settlements: Iterable[SettlementRecord],
    currency: Currency | str,
) -> Money:
    """Net of the member's pending settlements: paying out is positive."""
    total = Money.zero(currency)
    for settlement in settlements:
        if not settlement.is_pending:
            continue
        if settlement.from_member == member:
            total = total + settlement.amount
        elif settlement.to_member == member:
            total = total - settlement.amount
    return total
