"""
Records -- Expense, settlement and balance value types.

Responsibility:
    Transient, derived copies of the records owned by the external store,
    plus the computed Balance and SettlementTransaction results handed back
    to the UI/reporting layer.

Architecture position:
    Kernel > Domain -- pure data, zero I/O. Imported by the engines and the
    services layer.

Invariants enforced:
    - ExpenseRecord.amount is positive; every split share shares its currency.
    - SettlementRecord.from_member != to_member and amount is positive.
    - SettlementTransaction.amount is positive.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from types import MappingProxyType

from settleup_kernel.domain.values import Currency, Money, sum_money
from settleup_kernel.exceptions import SettleUpWarning


class SplitPolicy(str, Enum):
    """Rule used to divide an expense among members."""

    EQUAL = "equal"
    PERCENTAGE = "percentage"
    SHARES = "shares"
    EXACT = "exact"
    ADJUSTMENT = "adjustment"  # Manual correction layered on another policy


class SettlementStatus(str, Enum):
    """Lifecycle of a recorded settlement."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def _freeze(mapping: Mapping | None) -> Mapping | None:
    if mapping is None:
        return None
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class ExpenseRecord:
    """
    One shared expense as stored by the external store.

    Contract:
        ``split`` maps member id to the amount that member owes for this
        expense. ``weights`` keeps the raw percentages/shares the split was
        computed from, for audit only.
    Guarantees:
        - ``amount`` is positive.
        - All split shares are in the expense currency and non-negative.
    Non-goals:
        - Does not enforce ``sum(split) == amount``; the split engine does,
          and the balance aggregator reports any drift it finds.
    """

    expense_id: str
    payer: str
    amount: Money
    split: Mapping[str, Money]
    policy: SplitPolicy = SplitPolicy.EQUAL
    group_id: str | None = None
    weights: Mapping[str, Decimal] | None = None
    description: str = ""
    is_deleted: bool = False

    def __post_init__(self) -> None:
        if not self.payer:
            raise ValueError("Expense payer is required")
        if not self.amount.is_positive:
            raise ValueError(f"Expense amount must be positive, got {self.amount}")
        for member, share in self.split.items():
            if share.currency != self.amount.currency:
                raise ValueError(
                    f"Share for {member} is in {share.currency}, "
                    f"expense is in {self.amount.currency}"
                )
            if share.is_negative:
                raise ValueError(f"Share for {member} cannot be negative")
        object.__setattr__(self, "split", _freeze(self.split))
        object.__setattr__(self, "weights", _freeze(self.weights))

    @property
    def currency(self) -> Currency:
        return self.amount.currency

    @property
    def split_total(self) -> Money:
        return sum_money(self.split.values(), self.currency)

    def share_of(self, member: str) -> Money:
        """Amount ``member`` owes for this expense (zero if not a participant)."""
        return self.split.get(member, Money.zero(self.currency))

    def involves(self, member: str) -> bool:
        return self.payer == member or member in self.split


@dataclass(frozen=True)
class SettlementRecord:
    """
    A payment from one member to another, as stored by the external store.

    Contract:
        Only COMPLETED settlements move balances. ``related_expense_id``
        links a settlement to the expense it pays off, so that it can be
        cancelled when that expense is removed.
    Guarantees:
        - ``from_member != to_member``
        - ``amount`` is positive.
    """

    settlement_id: str
    from_member: str
    to_member: str
    amount: Money
    status: SettlementStatus = SettlementStatus.PENDING
    group_id: str | None = None
    related_expense_id: str | None = None
    cancelled_reason: str | None = None

    def __post_init__(self) -> None:
        if not self.from_member or not self.to_member:
            raise ValueError("Settlement needs both from_member and to_member")
        if self.from_member == self.to_member:
            raise ValueError(
                f"Settlement from and to are the same member: {self.from_member}"
            )
        if not self.amount.is_positive:
            raise ValueError(
                f"Settlement amount must be positive, got {self.amount}"
            )

    @property
    def is_pending(self) -> bool:
        return self.status == SettlementStatus.PENDING

    @property
    def is_completed(self) -> bool:
        return self.status == SettlementStatus.COMPLETED

    @property
    def is_cancelled(self) -> bool:
        return self.status == SettlementStatus.CANCELLED

    def involves(self, member: str) -> bool:
        return self.from_member == member or self.to_member == member

    def cancelled(self, reason: str) -> SettlementRecord:
        """Return a cancelled copy of this settlement."""
        return replace(
            self, status=SettlementStatus.CANCELLED, cancelled_reason=reason
        )


@dataclass(frozen=True)
class SettlementTransaction:
    """A proposed payment that reduces outstanding balances."""

    from_member: str
    to_member: str
    amount: Money

    def __post_init__(self) -> None:
        if not self.amount.is_positive:
            raise ValueError(
                f"Transaction amount must be positive, got {self.amount}"
            )

    def as_dict(self) -> dict[str, str]:
        return {
            "from": self.from_member,
            "to": self.to_member,
            "amount": str(self.amount.amount),
        }


@dataclass(frozen=True, eq=False)
class Balance(Mapping[str, Money]):
    """
    Net position per member: positive is owed money, negative owes money.

    Contract:
        Read-only mapping of member id to signed Money. ``issues`` carries
        the warnings raised while the balance was built; they never take
        part in equality.
    Guarantees:
        - Every amount is in ``currency``.
        - For a closed set of records ``total`` is zero within one minor
          unit; otherwise a BalanceIntegrityWarning is in ``issues``.
    """

    currency: Currency
    amounts: Mapping[str, Money] = field(default_factory=dict)
    issues: tuple[SettleUpWarning, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "amounts", _freeze(self.amounts))

    def __getitem__(self, member: str) -> Money:
        return self.amounts[member]

    def __iter__(self) -> Iterator[str]:
        return iter(self.amounts)

    def __len__(self) -> int:
        return len(self.amounts)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Balance):
            return self.currency == other.currency and dict(self.amounts) == dict(
                other.amounts
            )
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    @property
    def total(self) -> Money:
        return sum_money(self.amounts.values(), self.currency)

    @property
    def is_settled(self) -> bool:
        return all(amount.is_zero for amount in self.amounts.values())

    def of(self, member: str) -> Money:
        """Balance of ``member``, zero when the member has no records."""
        return self.amounts.get(member, Money.zero(self.currency))

    def as_amounts(self) -> dict[str, Decimal]:
        return {member: value.amount for member, value in self.amounts.items()}
