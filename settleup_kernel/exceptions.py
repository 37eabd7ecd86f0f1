"""
Typed exception and warning hierarchy for the settle-up core.

Every error carries a machine-readable ``code`` class attribute and keeps
its context as attributes, so callers catch by type and read structured
data instead of parsing messages.

    SettleUpError (base)
    |
    +-- SplitError
    |   +-- InvalidSplitError
    |
    +-- RecordError
    |   +-- RecordParseError
    |
    +-- CurrencyError
    |   +-- InvalidCurrencyError
    |   +-- CurrencyMismatchError
    |
    +-- SettlementError
        +-- InvalidSettlementAmountError

    SettleUpWarning (UserWarning)
    |
    +-- BalanceIntegrityWarning
    +-- UnparsableRecordWarning

Errors are raised. Warnings are never raised: they are logged and attached
to the computed result (see ``Balance.issues``) so that aggregation can
return a best-effort answer.

Category        | Code                       | When
----------------|----------------------------|------------------------------------
Split           | INVALID_SPLIT              | amount <= 0, no members, negative
                |                            | weight, exact sum out of tolerance
Record          | RECORD_PARSE_ERROR         | store record has an unusable field
Currency        | INVALID_CURRENCY           | not a known ISO 4217 code
                | CURRENCY_MISMATCH          | arithmetic across currencies
Settlement      | INVALID_SETTLEMENT_AMOUNT  | amount <= 0 or above the maximum
----------------|----------------------------|------------------------------------
Warnings        | BALANCE_INTEGRITY          | balances do not sum to zero
                | UNPARSABLE_RECORD          | a record was skipped
"""

from __future__ import annotations

from typing import Any


class SettleUpError(Exception):
    """
    Base exception for all settle-up core errors.

    All subclasses must have a ``code`` class attribute.
    """

    code: str = "SETTLEUP_ERROR"


# Split errors


class SplitError(SettleUpError):
    """Base exception for split computation errors."""

    code: str = "SPLIT_ERROR"


class InvalidSplitError(SplitError):
    """
    The split request cannot be satisfied.

    Always surfaced to the caller and never silently corrected: it signals
    a data-entry bug on the caller side.
    """

    code: str = "INVALID_SPLIT"

    def __init__(self, reason: str, policy: str | None = None, **details: Any):
        self.reason = reason
        self.policy = policy
        self.details = details
        prefix = f"{policy} split" if policy else "Split"
        super().__init__(f"{prefix} rejected: {reason}")


# Record errors


class RecordError(SettleUpError):
    """Base exception for expense/settlement record errors."""

    code: str = "RECORD_ERROR"


class RecordParseError(RecordError):
    """A record handed over by the store has an unusable field."""

    code: str = "RECORD_PARSE_ERROR"

    def __init__(
        self,
        record_kind: str,
        record_id: str | None,
        field: str,
        problem: str,
    ):
        self.record_kind = record_kind
        self.record_id = record_id
        self.field = field
        self.problem = problem
        super().__init__(
            f"Cannot parse {record_kind} {record_id or '<no id>'}: "
            f"field {field!r} {problem}"
        )


# Currency errors


class CurrencyError(SettleUpError):
    """Base exception for currency errors."""

    code: str = "CURRENCY_ERROR"


class InvalidCurrencyError(CurrencyError):
    """Currency code is not a known ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency_code: Any):
        self.currency_code = currency_code
        super().__init__(f"Invalid ISO 4217 currency code: {currency_code!r}")


class CurrencyMismatchError(CurrencyError):
    """Attempted operation on mismatched currencies."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, currency1: str, currency2: str):
        self.currency1 = currency1
        self.currency2 = currency2
        super().__init__(f"Currency mismatch: {currency1} vs {currency2}")


# Settlement errors


class SettlementError(SettleUpError):
    """Base exception for settlement errors."""

    code: str = "SETTLEMENT_ERROR"


class InvalidSettlementAmountError(SettlementError):
    """Settlement amount is not positive or exceeds the configured maximum."""

    code: str = "INVALID_SETTLEMENT_AMOUNT"

    def __init__(self, amount: str, max_amount: str):
        self.amount = amount
        self.max_amount = max_amount
        super().__init__(
            f"Settlement amount {amount} must be positive and at most {max_amount}"
        )


# Warnings


class SettleUpWarning(UserWarning):
    """Base class for non-fatal conditions found during a computation."""

    code: str = "SETTLEUP_WARNING"


class BalanceIntegrityWarning(SettleUpWarning):
    """Aggregated balances do not sum to zero within tolerance."""

    code: str = "BALANCE_INTEGRITY"

    def __init__(self, imbalance: str, currency: str, member_count: int):
        self.imbalance = imbalance
        self.currency = currency
        self.member_count = member_count
        super().__init__(
            f"Balances across {member_count} members sum to "
            f"{imbalance} {currency}, expected 0"
        )


class UnparsableRecordWarning(SettleUpWarning):
    """A malformed record was skipped during aggregation."""

    code: str = "UNPARSABLE_RECORD"

    def __init__(self, record_kind: str, record_id: str | None, problem: str):
        self.record_kind = record_kind
        self.record_id = record_id
        self.problem = problem
        super().__init__(
            f"Skipped {record_kind} {record_id or '<no id>'}: {problem}"
        )
