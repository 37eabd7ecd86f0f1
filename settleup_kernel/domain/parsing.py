"""
Parsing -- Convert raw store documents into typed records.

Responsibility:
    The external store hands over plain mappings (JSON-like documents, with
    camelCase keys as written by the mobile client, or snake_case keys).
    This module turns them into ExpenseRecord / SettlementRecord, or raises
    RecordParseError naming the offending field.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Failure modes:
    - RecordParseError for a missing or unusable field. Callers that fold
      many records (the balance aggregator) catch it per record.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from settleup_kernel.domain.records import (
    ExpenseRecord,
    SettlementRecord,
    SettlementStatus,
    SplitPolicy,
)
from settleup_kernel.domain.values import Currency, Money
from settleup_kernel.exceptions import InvalidCurrencyError, RecordParseError

_MISSING = object()

# Store documents carry the policy as the enum index written by the client.
_POLICY_BY_INDEX = tuple(SplitPolicy)


def _first(data: Mapping[str, Any], *keys: str, default: Any = _MISSING) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def parse_decimal(value: Any) -> Decimal:
    """
    Parse a store amount into a finite Decimal.

    Floats coming from JSON are converted through ``str`` so that ``33.33``
    becomes ``Decimal("33.33")`` rather than its binary expansion.
    """
    if isinstance(value, bool):
        raise ValueError("boolean is not an amount")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as e:
            raise ValueError(f"{value!r} is not a number") from e
    else:
        raise ValueError(f"{type(value).__name__} is not an amount")
    if not result.is_finite():
        raise ValueError(f"{value!r} is not finite")
    return result


def parse_policy(value: Any) -> SplitPolicy:
    """Parse a split policy from its enum index or name."""
    if isinstance(value, SplitPolicy):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        if 0 <= value < len(_POLICY_BY_INDEX):
            return _POLICY_BY_INDEX[value]
        raise ValueError(f"unknown policy index {value}")
    if isinstance(value, str):
        try:
            return SplitPolicy(value.strip().lower())
        except ValueError as e:
            raise ValueError(f"unknown policy {value!r}") from e
    raise ValueError(f"unknown policy {value!r}")


def parse_status(value: Any) -> SettlementStatus:
    """Parse a settlement status; unknown values read as PENDING."""
    if isinstance(value, SettlementStatus):
        return value
    if isinstance(value, str):
        try:
            return SettlementStatus(value.strip().lower())
        except ValueError:
            return SettlementStatus.PENDING
    return SettlementStatus.PENDING


def _money(
    value: Any, currency: Currency, kind: str, record_id: str | None, field: str
) -> Money:
    try:
        return Money.of(parse_decimal(value), currency)
    except ValueError as e:
        raise RecordParseError(kind, record_id, field, str(e)) from e


def _currency(
    data: Mapping[str, Any], default: Currency, kind: str, record_id: str | None
) -> Currency:
    code = _first(data, "currency", default=None)
    if code is None:
        return default
    try:
        return Currency(code)
    except InvalidCurrencyError as e:
        raise RecordParseError(kind, record_id, "currency", str(e)) from e


def parse_expense(data: Mapping[str, Any], currency: Currency | str) -> ExpenseRecord:
    """
    Build an ExpenseRecord from a store document.

    Raises:
        RecordParseError: if any field is missing or unusable.
    """
    kind = "expense"
    if isinstance(currency, str):
        currency = Currency(currency)
    if not isinstance(data, Mapping):
        raise RecordParseError(kind, None, "<record>", "is not a mapping")

    record_id = _first(data, "id", "expense_id", default=None)
    if record_id is None:
        raise RecordParseError(kind, None, "id", "is missing")
    record_id = str(record_id)
    currency = _currency(data, currency, kind, record_id)

    payer = _first(data, "payer", default=None)
    if not isinstance(payer, str) or not payer:
        raise RecordParseError(kind, record_id, "payer", "is missing")

    amount = _money(_first(data, "amount", default=None), currency, kind, record_id, "amount")

    raw_split = _first(data, "split", default=None)
    if not isinstance(raw_split, Mapping):
        raise RecordParseError(kind, record_id, "split", "is not a mapping")
    split = {
        str(member): _money(share, currency, kind, record_id, f"split.{member}")
        for member, share in raw_split.items()
    }

    try:
        policy = parse_policy(_first(data, "splitType", "policy", default=SplitPolicy.EQUAL))
    except ValueError as e:
        raise RecordParseError(kind, record_id, "splitType", str(e)) from e

    raw_weights = _first(data, "customRatios", "weights", default=None)
    weights = None
    if raw_weights is not None:
        if not isinstance(raw_weights, Mapping):
            raise RecordParseError(kind, record_id, "customRatios", "is not a mapping")
        try:
            weights = {str(m): parse_decimal(w) for m, w in raw_weights.items()}
        except ValueError as e:
            raise RecordParseError(kind, record_id, "customRatios", str(e)) from e

    try:
        return ExpenseRecord(
            expense_id=record_id,
            payer=payer,
            amount=amount,
            split=split,
            policy=policy,
            group_id=_first(data, "groupId", "group_id", default=None) or None,
            weights=weights,
            description=str(_first(data, "description", default="")),
            is_deleted=bool(_first(data, "isDeleted", "is_deleted", default=False)),
        )
    except ValueError as e:
        raise RecordParseError(kind, record_id, "<record>", str(e)) from e


def parse_settlement(
    data: Mapping[str, Any], currency: Currency | str
) -> SettlementRecord:
    """
    Build a SettlementRecord from a store document.

    Raises:
        RecordParseError: if any field is missing or unusable.
    """
    kind = "settlement"
    if isinstance(currency, str):
        currency = Currency(currency)
    if not isinstance(data, Mapping):
        raise RecordParseError(kind, None, "<record>", "is not a mapping")

    record_id = _first(data, "id", "settlement_id", default=None)
    if record_id is None:
        raise RecordParseError(kind, None, "id", "is missing")
    record_id = str(record_id)
    currency = _currency(data, currency, kind, record_id)

    from_member = _first(data, "fromUser", "from_member", default=None)
    to_member = _first(data, "toUser", "to_member", default=None)
    if not isinstance(from_member, str) or not from_member:
        raise RecordParseError(kind, record_id, "fromUser", "is missing")
    if not isinstance(to_member, str) or not to_member:
        raise RecordParseError(kind, record_id, "toUser", "is missing")

    amount = _money(_first(data, "amount", default=None), currency, kind, record_id, "amount")

    try:
        return SettlementRecord(
            settlement_id=record_id,
            from_member=from_member,
            to_member=to_member,
            amount=amount,
            status=parse_status(_first(data, "status", default=None)),
            group_id=_first(data, "groupId", "group_id", default=None) or None,
            related_expense_id=_first(
                data, "relatedExpenseId", "related_expense_id", default=None
            ),
            cancelled_reason=_first(
                data, "cancelledReason", "cancelled_reason", default=None
            ),
        )
    except ValueError as e:
        raise RecordParseError(kind, record_id, "<record>", str(e)) from e
