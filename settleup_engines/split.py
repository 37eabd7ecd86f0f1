"""
Module: settleup_engines.split
Responsibility:
    Divide one expense among group members under a split policy (equal,
    percentage, shares, exact, adjustment) with deterministic rounding.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import settleup_kernel (domain values, exceptions, logging).

Invariants enforced:
    - Conservation: for every policy except ADJUSTMENT the shares sum to
      the expense amount exactly, in integer minor units.
    - Equal: any two shares differ by at most one minor unit; the extra
      units go to the first members in input order.
    - Percentage/Shares: drift is removed by construction (the smallest
      weight absorbs the remainder) rather than by a later correction.
    - Exact: out-of-balance input is corrected by largest-remainder, one
      minor unit at a time, never pushing a share below zero.

Failure modes:
    - InvalidSplitError when the amount is not positive, the member set is
      empty, a weight is negative or not a number, all weights are zero, or
      exact amounts miss the total by more than the tolerance.

Usage:
    from settleup_engines.split import compute_split
    from settleup_kernel.domain.records import SplitPolicy
    from settleup_kernel.domain.values import Money

    result = compute_split(Money.of("100.00", "USD"), SplitPolicy.EQUAL, ["a", "b", "c"])
    result.as_amounts()  # {"a": Decimal("33.34"), "b": Decimal("33.33"), "c": Decimal("33.33")}
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, assert_never

from settleup_engines.tracer import traced_engine
from settleup_kernel.domain.parsing import parse_decimal
from settleup_kernel.domain.records import SplitPolicy
from settleup_kernel.domain.values import Currency, Money
from settleup_kernel.exceptions import InvalidSplitError
from settleup_kernel.logging_config import get_logger

logger = get_logger("engines.split")

_HUNDRED = Decimal("100")


class WeightedRounding(str, Enum):
    """Who absorbs the rounding remainder in percentage/shares splits."""

    REMAINDER_TO_LAST = "remainder_to_last"  # Smallest weight takes the rest
    LARGEST_REMAINDER = "largest_remainder"  # Largest fractional parts first


def _member_weights(
    values: Mapping[str, Any], policy: SplitPolicy
) -> Mapping[str, Decimal]:
    if not isinstance(values, Mapping):
        raise InvalidSplitError("weights must be a mapping of member to value", policy.value)
    parsed: dict[str, Decimal] = {}
    for member, raw in values.items():
        if not member:
            raise InvalidSplitError("member id cannot be empty", policy.value)
        try:
            value = parse_decimal(raw)
        except ValueError as e:
            raise InvalidSplitError(
                f"value for {member} is not a number", policy.value, member=member
            ) from e
        if value < 0:
            raise InvalidSplitError(
                f"value for {member} cannot be negative",
                policy.value,
                member=member,
                value=str(value),
            )
        parsed[str(member)] = value
    if not parsed:
        raise InvalidSplitError("member set is empty", policy.value)
    return MappingProxyType(parsed)


# ---------------------------------------------------------------------------
# Split requests -- one variant per policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EqualSplit:
    """Split evenly across ``members``."""

    policy: ClassVar[SplitPolicy] = SplitPolicy.EQUAL
    members: tuple[str, ...]

    def __post_init__(self) -> None:
        members = tuple(str(m) for m in self.members)
        if not members:
            raise InvalidSplitError("member set is empty", self.policy.value)
        if any(not m for m in members):
            raise InvalidSplitError("member id cannot be empty", self.policy.value)
        if len(set(members)) != len(members):
            raise InvalidSplitError("member set has duplicates", self.policy.value)
        object.__setattr__(self, "members", members)


@dataclass(frozen=True)
class PercentageSplit:
    """Split by percentage; percentages are normalized to their total."""

    policy: ClassVar[SplitPolicy] = SplitPolicy.PERCENTAGE
    percentages: Mapping[str, Decimal]

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "percentages", _member_weights(self.percentages, self.policy)
        )


@dataclass(frozen=True)
class SharesSplit:
    """Split by relative shares (e.g. 2 shares vs 1 share)."""

    policy: ClassVar[SplitPolicy] = SplitPolicy.SHARES
    shares: Mapping[str, Decimal]

    def __post_init__(self) -> None:
        object.__setattr__(self, "shares", _member_weights(self.shares, self.policy))


@dataclass(frozen=True)
class ExactSplit:
    """Caller-supplied amounts in major units, corrected to the total."""

    policy: ClassVar[SplitPolicy] = SplitPolicy.EXACT
    amounts: Mapping[str, Decimal]

    def __post_init__(self) -> None:
        object.__setattr__(self, "amounts", _member_weights(self.amounts, self.policy))


@dataclass(frozen=True)
class AdjustmentSplit:
    """Manual correction: amounts pass through; the caller owns the sum."""

    policy: ClassVar[SplitPolicy] = SplitPolicy.ADJUSTMENT
    amounts: Mapping[str, Decimal]

    def __post_init__(self) -> None:
        object.__setattr__(self, "amounts", _member_weights(self.amounts, self.policy))


SplitRequest = EqualSplit | PercentageSplit | SharesSplit | ExactSplit | AdjustmentSplit


def build_request(
    policy: SplitPolicy | str, member_weights: Mapping[str, Any] | Iterable[str]
) -> SplitRequest:
    """
    Build the request variant for a policy tag.

    For EQUAL, ``member_weights`` may be a list of member ids or a mapping
    (its keys are used). Every other policy needs a mapping.
    """
    try:
        policy = SplitPolicy(policy)
    except ValueError as e:
        raise InvalidSplitError(f"unknown policy {policy!r}") from e

    if policy is SplitPolicy.EQUAL:
        if isinstance(member_weights, Mapping):
            return EqualSplit(members=tuple(member_weights.keys()))
        if isinstance(member_weights, str):
            raise InvalidSplitError("members must be a collection of ids", policy.value)
        return EqualSplit(members=tuple(member_weights))
    if not isinstance(member_weights, Mapping):
        raise InvalidSplitError("weights must be a mapping of member to value", policy.value)
    match policy:
        case SplitPolicy.PERCENTAGE:
            return PercentageSplit(percentages=member_weights)
        case SplitPolicy.SHARES:
            return SharesSplit(shares=member_weights)
        case SplitPolicy.EXACT:
            return ExactSplit(amounts=member_weights)
        case SplitPolicy.ADJUSTMENT:
            return AdjustmentSplit(amounts=member_weights)
        case _:
            assert_never(policy)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SplitResult:
    """
    Outcome of splitting one expense.

    Contract:
        Frozen summary of a split, ready to be stored on the expense record.
    Guarantees:
        - ``sum(shares) == total`` for every policy except ADJUSTMENT.
        - ``rounding_adjustment`` is ``total`` minus the sum of naively
          rounded shares, i.e. the minor units the rounding rule moved.
    Non-goals:
        - Does not persist itself; callers store ``as_amounts()``.
    """

    policy: SplitPolicy
    total: Money
    shares: Mapping[str, Money]
    weights: Mapping[str, Decimal] | None = None
    rounding_adjustment: Money | None = None

    @property
    def split_total(self) -> Money:
        result = Money.zero(self.total.currency)
        for share in self.shares.values():
            result = result + share
        return result

    @property
    def is_balanced(self) -> bool:
        return self.split_total == self.total

    def as_amounts(self) -> dict[str, Decimal]:
        """Member -> decimal amount, in the order the shares were assigned."""
        return {member: share.amount for member, share in self.shares.items()}


# ---------------------------------------------------------------------------
# Rounding helpers (integer minor units)
# ---------------------------------------------------------------------------


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def distribute_largest_remainder(
    total_minor: int, exact_minor: Mapping[str, Decimal]
) -> dict[str, int]:
    """
    Round exact minor-unit values so that they sum to ``total_minor``.

    Each value is floored; the delta to the target is then handed out one
    unit at a time. When short, the largest fractional remainders receive
    a unit first (round-robin if the delta exceeds the entry count). When
    in excess, units are taken from the smallest fractional remainders
    first, never below zero.
    """
    if not exact_minor:
        return {}
    members = list(exact_minor)
    floored: dict[str, int] = {}
    fraction: dict[str, Decimal] = {}
    for member in members:
        value = exact_minor[member]
        whole = int(value.to_integral_value(rounding=ROUND_FLOOR))
        floored[member] = whole
        fraction[member] = value - whole

    delta = total_minor - sum(floored.values())
    if delta == 0:
        return floored

    # Stable sorts keep input order among equal remainders
    if delta > 0:
        order = sorted(members, key=lambda m: fraction[m], reverse=True)
    else:
        order = sorted(members, key=lambda m: fraction[m])

    i = 0
    idle_steps = 0
    while delta != 0:
        member = order[i % len(order)]
        if delta > 0:
            floored[member] += 1
            delta -= 1
            idle_steps = 0
        elif floored[member] > 0:
            floored[member] -= 1
            delta += 1
            idle_steps = 0
        else:
            idle_steps += 1
            if idle_steps >= len(order):
                raise InvalidSplitError(
                    "cannot remove excess without a negative share",
                    SplitPolicy.EXACT.value,
                    excess_minor_units=-delta,
                )
        i += 1
    return floored


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@dataclass
class SplitCalculator:
    """
    Split expenses under any split policy.

    Contract:
        Pure functions with deterministic rounding. No I/O.
    Guarantees:
        - All arithmetic is on integer minor units; decimal inputs are
          converted once, at the currency's precision.
        - Identical inputs always produce identical shares.
    Non-goals:
        - Does not decide which policy applies; callers select it.
        - Does not convert currencies.
    """

    weighted_rounding: WeightedRounding = WeightedRounding.REMAINDER_TO_LAST
    exact_tolerance_per_member: int = 1

    @traced_engine("split", "1.0", fingerprint_fields=("amount", "request"))
    def calculate(self, amount: Money, request: SplitRequest) -> SplitResult:
        """
        Split ``amount`` according to ``request``.

        Raises:
            InvalidSplitError: see module docstring.
        """
        policy = request.policy
        if not amount.is_positive:
            raise InvalidSplitError(
                f"amount must be positive, got {amount}",
                policy.value,
                amount=str(amount.amount),
            )

        logger.info("split_started", extra={
            "amount": str(amount.amount),
            "currency": amount.currency.code,
            "policy": policy.value,
        })

        match request:
            case EqualSplit():
                result = self._split_equal(amount, request)
            case PercentageSplit():
                result = self._split_weighted(amount, request.percentages, policy)
            case SharesSplit():
                result = self._split_weighted(amount, request.shares, policy)
            case ExactSplit():
                result = self._split_exact(amount, request)
            case AdjustmentSplit():
                result = self._split_adjustment(amount, request)
            case _:
                assert_never(request)

        logger.info("split_completed", extra={
            "policy": policy.value,
            "member_count": len(result.shares),
            "total": str(amount.amount),
            "split_total": str(result.split_total.amount),
            "rounding_adjustment": str(result.rounding_adjustment.amount)
            if result.rounding_adjustment is not None
            else None,
        })
        return result

    def _split_equal(self, amount: Money, request: EqualSplit) -> SplitResult:
        """First ``total % n`` members get one extra minor unit."""
        currency = amount.currency
        count = len(request.members)
        base, remainder = divmod(amount.minor, count)
        shares = {
            member: Money.from_minor(base + (1 if i < remainder else 0), currency)
            for i, member in enumerate(request.members)
        }
        naive = _round_half_up(Decimal(amount.minor) / count) * count
        return SplitResult(
            policy=SplitPolicy.EQUAL,
            total=amount,
            shares=MappingProxyType(shares),
            rounding_adjustment=Money.from_minor(amount.minor - naive, currency),
        )

    def _split_weighted(
        self,
        amount: Money,
        weights: Mapping[str, Decimal],
        policy: SplitPolicy,
    ) -> SplitResult:
        currency = amount.currency
        total_weight = sum(weights.values(), Decimal("0"))
        if total_weight == 0:
            raise InvalidSplitError("total weight cannot be zero", policy.value)
        if policy is SplitPolicy.PERCENTAGE and total_weight != _HUNDRED:
            logger.warning("split_percentages_not_100", extra={
                "total_percentage": str(total_weight),
            })

        exact = {
            member: Decimal(amount.minor) * weight / total_weight
            for member, weight in weights.items()
        }
        naive_total = sum(_round_half_up(value) for value in exact.values())

        minor: dict[str, int] | None = None
        if self.weighted_rounding is WeightedRounding.REMAINDER_TO_LAST:
            minor = self._remainder_to_last(amount.minor, weights, exact)
            if minor is None:
                logger.warning("split_remainder_negative_fallback", extra={
                    "policy": policy.value,
                    "amount_minor": amount.minor,
                    "member_count": len(weights),
                })
        if minor is None:
            minor = distribute_largest_remainder(amount.minor, exact)

        return SplitResult(
            policy=policy,
            total=amount,
            shares=MappingProxyType(
                {member: Money.from_minor(units, currency) for member, units in minor.items()}
            ),
            weights=weights,
            rounding_adjustment=Money.from_minor(amount.minor - naive_total, currency),
        )

    @staticmethod
    def _remainder_to_last(
        total_minor: int,
        weights: Mapping[str, Decimal],
        exact: Mapping[str, Decimal],
    ) -> dict[str, int] | None:
        """
        Round all but the smallest positive weight; that one takes the rest.

        Zero weights get nothing. Returns None when half-up rounding
        overshoots so far that the last member would be left with a
        negative share.
        """
        order = sorted(
            (m for m in weights if weights[m] > 0),
            key=lambda m: weights[m],
            reverse=True,
        )
        minor: dict[str, int] = {member: 0 for member in weights}
        assigned = 0
        for member in order[:-1]:
            units = _round_half_up(exact[member])
            minor[member] = units
            assigned += units
        last = total_minor - assigned
        if last < 0:
            return None
        minor[order[-1]] = last
        return minor

    def _split_exact(self, amount: Money, request: ExactSplit) -> SplitResult:
        currency = amount.currency
        factor = currency.minor_units_per_major
        exact = {member: value * factor for member, value in request.amounts.items()}
        raw_total = sum(exact.values(), Decimal("0"))
        gap = Decimal(amount.minor) - raw_total
        tolerance = self.exact_tolerance_per_member * len(exact)
        if abs(gap) > tolerance:
            raise InvalidSplitError(
                "exact amounts do not add up to the expense amount",
                SplitPolicy.EXACT.value,
                expected=str(amount.amount),
                actual=str(raw_total / factor),
                tolerance_minor_units=tolerance,
            )
        minor = distribute_largest_remainder(amount.minor, exact)
        naive_total = sum(_round_half_up(value) for value in exact.values())
        if gap != 0:
            logger.info("split_exact_corrected", extra={
                "gap_minor_units": str(gap),
                "member_count": len(exact),
            })
        return SplitResult(
            policy=SplitPolicy.EXACT,
            total=amount,
            shares=MappingProxyType(
                {member: Money.from_minor(units, currency) for member, units in minor.items()}
            ),
            weights=request.amounts,
            rounding_adjustment=Money.from_minor(amount.minor - naive_total, currency),
        )

    def _split_adjustment(self, amount: Money, request: AdjustmentSplit) -> SplitResult:
        currency = amount.currency
        shares = {
            member: Money.of(value, currency) for member, value in request.amounts.items()
        }
        return SplitResult(
            policy=SplitPolicy.ADJUSTMENT,
            total=amount,
            shares=MappingProxyType(shares),
            weights=request.amounts,
            rounding_adjustment=Money.zero(currency),
        )


def adjust_to_total(
    total: Money, amounts: Mapping[str, Decimal | str | int]
) -> dict[str, Money]:
    """
    Largest-remainder correction of custom amounts, without a tolerance check.

    Used when a form's per-member amounts were typed against a total that
    has since been edited.
    """
    if not amounts:
        return {}
    parsed = _member_weights(amounts, SplitPolicy.EXACT)
    factor = total.currency.minor_units_per_major
    minor = distribute_largest_remainder(
        total.minor, {member: value * factor for member, value in parsed.items()}
    )
    return {member: Money.from_minor(units, total.currency) for member, units in minor.items()}


def compute_split(
    amount: Money | Decimal | str | int,
    policy: SplitPolicy | str,
    member_weights: Mapping[str, Any] | Iterable[str],
    *,
    currency: Currency | str = "USD",
    calculator: SplitCalculator | None = None,
) -> SplitResult:
    """
    Split an expense amount among members.

    Args:
        amount: Expense amount, as Money or a decimal in major units of
            ``currency``.
        policy: Split policy tag.
        member_weights: Member ids (EQUAL) or member -> percentage, share
            count or amount.
        currency: Currency of a non-Money ``amount``.
        calculator: Calculator to use; defaults to the remainder-to-last
            rule with a one-minor-unit-per-member exact tolerance.

    Raises:
        InvalidSplitError: on any invalid input.
    """
    if not isinstance(amount, Money):
        try:
            amount = Money.of(parse_decimal(amount), currency)
        except ValueError as e:
            raise InvalidSplitError(f"amount {amount!r} is not a number") from e
    request = build_request(policy, member_weights)
    engine = calculator or SplitCalculator()
    return engine.calculate(amount=amount, request=request)
